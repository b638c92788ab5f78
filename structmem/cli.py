"""
Command-line interface for structured memory.

Structured data (items, schemas, counts) is written to stdout; status messages
and errors go to stderr so that `--json` output can be piped into other tools.
"""

import json
from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, List, Optional

import click

from .models.core import InvalidCategoryError, MemoryItem, Schema
from .models.query import Recall, Remember, describe_plan
from .services.document_parser import SchemaValidationError
from .services.expiry import TTLFormatError
from .services.memory_management import MemoryManagementError, MemoryManagementService, RecallResult
from .services.query_resolver import QueryResolutionError
from .services.schema_store import IndexCreationError
from .utils.bedrock_llm import BedrockLLMError, LLMUnavailableError
from .utils.logging_config import get_logger, setup_logging
from .utils.store import StorageError

logger = get_logger(__name__)

MODEL_FREE_HINT = ('Commands that work without a model: recall -c/-k, discover, forget, define, schema, '
                   'drop, init, prune, promote (same category), remember --data')


@dataclass
class CliState:
    """Global flags plus the lazily built service."""
    as_json: bool = False
    include_expired: bool = False
    service: Optional[MemoryManagementService] = None

    def memory(self) -> MemoryManagementService:
        if self.service is None:
            self.service = MemoryManagementService()
        return self.service


def handle_errors(func):
    """Turn domain errors into a one-line message on stderr and exit status 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LLMUnavailableError as e:
            raise click.ClickException(f'{e}\n{MODEL_FREE_HINT}')
        except SchemaValidationError as e:
            raise click.ClickException(str(e))
        except IndexCreationError as e:
            raise click.ClickException(f'{e}. Run the same command again to retry the indexes')
        except (MemoryManagementError, InvalidCategoryError, TTLFormatError, QueryResolutionError) as e:
            raise click.ClickException(str(e))
        except (StorageError, BedrockLLMError) as e:
            logger.error(f'Command failed: {e}')
            raise click.ClickException(str(e))

    return wrapper


def emit(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def status(message: str) -> None:
    click.echo(message, err=True)


def format_item(item: Dict[str, Any]) -> str:
    lines = [f"{item.get('category')}/{item.get('key')}"]
    for name, value in item.items():
        if name in ('category', 'key'):
            continue
        lines.append(f'  {name}: {value}')
    return '\n'.join(lines)


def format_items(items: List[Dict[str, Any]]) -> str:
    return '\n\n'.join(format_item(item) for item in items)


def format_schema(schema: Schema, indexes: List[Dict[str, Any]]) -> str:
    lines = [f'Category: {schema.category}',
             f'Description: {schema.description}',
             f'Validation: {schema.validation.value}',
             'Attributes:',
             schema.describe_shape()]
    if indexes:
        lines.append('Indexes:')
        lines.extend(f"  - {index['name']} ({index['attribute']}, {index['type']})" for index in indexes)
    return '\n'.join(lines)


def schema_payload(schema: Schema, indexes: List[Dict[str, Any]]) -> Dict[str, Any]:
    payload = schema.to_dict()
    payload['indexes'] = indexes
    return payload


def print_recall(state: CliState, result: RecallResult, query: Optional[str] = None) -> None:
    if result.plan is not None:
        logger.debug(f'Executed plan: {describe_plan(result.plan)}')
    if state.as_json:
        emit(result.items)
        return
    if not result.items:
        status('No memories found.')
        return
    if query:
        try:
            answer = state.memory().answer(query, result.items)
        except (LLMUnavailableError, BedrockLLMError) as e:
            logger.warning(f'Answer synthesis failed, showing items: {e}')
            click.echo(format_items(result.items))
            return
        if answer is None:
            status('No relevant memories found.')
        else:
            click.echo(answer)
        return
    click.echo(format_items(result.items))


def print_stored(state: CliState, item: MemoryItem) -> None:
    if state.as_json:
        emit(item.to_document())
    status(f'Stored {item.category}/{item.key}' + (f' (expires {item.expires_at})' if item.expires_at else ''))


@click.group(invoke_without_command=True)
@click.option('--json', 'as_json', is_flag=True, help='Write structured output as JSON')
@click.option('--include-expired', is_flag=True, help='Include expired memories in reads')
@click.option('-p', '--prompt', help='Free-form input; stored or answered depending on its intent')
@click.option('-v', '--verbose', is_flag=True, help='Log debug details to stderr')
@click.pass_context
@handle_errors
def cli(ctx, as_json: bool, include_expired: bool, prompt: Optional[str], verbose: bool):
    """Schema-aware structured memory."""
    if verbose:
        setup_logging(level='DEBUG')
    state = ctx.ensure_object(CliState)
    state.as_json = state.as_json or as_json
    state.include_expired = state.include_expired or include_expired

    if prompt:
        intent, result = state.memory().ask(prompt)
        if isinstance(intent, Remember):
            print_stored(state, result)
        elif isinstance(intent, Recall):
            print_recall(state, result, intent.query)
        return
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command('remember')
@click.option('-c', '--category', help='Target category (chosen automatically when omitted)')
@click.option('-k', '--key', help='Sort key for the memory')
@click.option('--ttl', help='Time to live, e.g. 24h, 7d, 2w')
@click.option('--data', help='Structured JSON object to store as-is (no model needed)')
@click.argument('text', nargs=-1)
@click.pass_obj
@handle_errors
def remember_command(state: CliState, category: Optional[str], key: Optional[str], ttl: Optional[str],
                     data: Optional[str], text):
    """Store a memory from natural language or structured JSON."""
    if data:
        try:
            content = json.loads(data)
        except json.JSONDecodeError as e:
            raise click.ClickException(f'Invalid --data JSON: {e}')
        if not isinstance(content, dict):
            raise click.ClickException('--data must be a JSON object')
    else:
        content = ' '.join(text).strip()
        if not content:
            raise click.ClickException('No input provided. Give text to remember or --data JSON')

    item = state.memory().remember(content, category=category, key=key, ttl=ttl)
    print_stored(state, item)


@cli.command('recall')
@click.option('-c', '--category', help='Category to read')
@click.option('-k', '--key', help='Exact sort key (requires --category)')
@click.option('-q', '--query', help='Natural-language question')
@click.option('--prefix', help='Sort-key prefix (requires --category)')
@click.option('--limit', type=int, default=None, help='Maximum number of items')
@click.pass_obj
@handle_errors
def recall_command(state: CliState, category: Optional[str], key: Optional[str], query: Optional[str],
                   prefix: Optional[str], limit: Optional[int]):
    """Retrieve memories by category/key or by question."""
    if (key or prefix) and not category:
        raise click.ClickException('--key and --prefix require --category')
    result = state.memory().recall(category=category, key=key, query=query, prefix=prefix, limit=limit,
                                   include_expired=state.include_expired)
    if key and not result.items and not state.as_json:
        status(f'No memory found for {category}/{key}')
        return
    print_recall(state, result, query)


@cli.command('discover')
@click.option('-c', '--category', help='Category to inspect')
@click.option('--limit', type=int, default=None, help='Maximum number of items to inspect')
@click.pass_obj
@handle_errors
def discover_command(state: CliState, category: Optional[str], limit: Optional[int]):
    """Browse categories, keys, schemas and indexes."""
    overview = state.memory().discover(category=category, limit=limit, include_expired=state.include_expired)
    if state.as_json:
        emit(overview)
        return

    if category is None:
        if not overview:
            status('No categories found.')
            return
        for entry in overview:
            description = entry['description'] or '(no schema)'
            click.echo(f"{entry['category']}: {description} ({entry['item_count']} items, "
                       f"{entry['attribute_count']} attributes, {entry['index_count']} indexes)")
        return

    if overview['keys']:
        click.echo(f'Keys in {category}:')
        for key in overview['keys']:
            click.echo(f'  - {key}')
    else:
        status(f"No keys found in category '{category}'.")
    if overview['schema']:
        click.echo('')
        click.echo(format_schema(Schema.from_dict(overview['schema']), overview['indexes']))


@cli.command('forget')
@click.option('-c', '--category', required=True, help='Category of the memory')
@click.option('-k', '--key', required=True, help='Sort key of the memory')
@click.pass_obj
@handle_errors
def forget_command(state: CliState, category: str, key: str):
    """Delete a memory. Forgetting an absent key succeeds."""
    removed = state.memory().forget(category, key)
    if state.as_json:
        emit({'category': category, 'key': key, 'removed': removed})
    if removed:
        status(f'Forgot {category}/{key}')
    else:
        status(f'No memory found for {category}/{key}')


@cli.command('define')
@click.option('-c', '--category', required=True, help='Category to define')
@click.option('-d', '--description', required=True, help='What the category stores')
@click.option('-a', '--attributes', required=True,
              help='JSON list, e.g. \'[{"name": "email", "type": "STRING", "required": true}]\'')
@click.option('--auto-index', is_flag=True, help='Create an index for every attribute')
@click.pass_obj
@handle_errors
def define_command(state: CliState, category: str, description: str, attributes: str, auto_index: bool):
    """Define a strict schema for a category."""
    try:
        definitions = json.loads(attributes)
    except json.JSONDecodeError as e:
        raise click.ClickException(f'Invalid attributes JSON: {e}')
    if not isinstance(definitions, list):
        raise click.ClickException('--attributes must be a JSON list')

    service = state.memory()
    schema = service.define(category, description, definitions, auto_index=auto_index)
    if state.as_json:
        emit(schema_payload(schema, service.indexes(schema)))
    status(f"Schema defined for '{schema.category}'")


@cli.command('schema')
@click.option('-c', '--category', help='Category to show (all when omitted)')
@click.pass_obj
@handle_errors
def schema_command(state: CliState, category: Optional[str]):
    """Show one schema or list them all."""
    service = state.memory()
    if category:
        schema = service.schema(category)
        if schema is None:
            if state.as_json:
                emit(None)
            status(f"No schema defined for category '{category}'")
            return
        indexes = service.indexes(schema)
        if state.as_json:
            emit(schema_payload(schema, indexes))
        else:
            click.echo(format_schema(schema, indexes))
        return

    schemas = service.schema()
    if state.as_json:
        emit([schema_payload(schema, service.indexes(schema)) for schema in schemas])
        return
    if not schemas:
        status('No schemas defined.')
        return
    for schema in schemas:
        click.echo(f'{schema.category}: {schema.description} '
                   f'({len(schema.attributes)} attributes, {len(service.indexes(schema))} indexes)')


@cli.command('drop')
@click.option('-c', '--category', required=True, help='Category whose schema to drop')
@click.pass_obj
@handle_errors
def drop_command(state: CliState, category: str):
    """Drop a schema and its indexes (items are kept)."""
    dropped = state.memory().drop(category)
    if state.as_json:
        emit({'category': category, 'dropped': dropped})
    status(f"Dropped schema for '{category}'" if dropped else f"No schema defined for category '{category}'")


@cli.command('init')
@click.option('--force', is_flag=True, help='Recreate the predefined categories')
@click.pass_obj
@handle_errors
def init_command(state: CliState, force: bool):
    """Create the predefined categories."""
    created = state.memory().init(force=force)
    if state.as_json:
        emit({'initialized': created})
        return
    if created:
        status(f"Initialized {len(created)} predefined categories: {', '.join(created)}")
    else:
        status('Predefined categories already exist. Use --force to recreate them.')


@cli.command('promote')
@click.option('-c', '--category', required=True, help='Category of the memory')
@click.option('-k', '--key', required=True, help='Sort key of the memory')
@click.option('--to', 'target', help='Move into this category (re-parsed against its schema)')
@click.pass_obj
@handle_errors
def promote_command(state: CliState, category: str, key: str, target: Optional[str]):
    """Remove a memory's TTL, optionally moving it to another category."""
    item = state.memory().promote(category, key, to=target)
    if item is None:
        raise click.ClickException(f'No memory found for {category}/{key}')
    if state.as_json:
        emit({'promoted': True, 'from': f'{category}/{key}', 'to': f'{item.category}/{item.key}'})
    if item.category == category and item.key == key:
        status(f'Promoted {category}/{key} (TTL removed)')
    else:
        status(f'Promoted {category}/{key} to {item.category}/{item.key}')


@cli.command('prune')
@click.option('-c', '--category', help='Category to prune (all when omitted)')
@click.pass_obj
@handle_errors
def prune_command(state: CliState, category: Optional[str]):
    """Delete expired memories."""
    pruned = state.memory().prune(category)
    if state.as_json:
        emit({'pruned': pruned})
        return
    status(f'Pruned {pruned} expired memories.' if pruned else 'No expired memories found.')


@cli.command('health')
@click.pass_obj
@handle_errors
def health_command(state: CliState):
    """Check storage and model reachability."""
    from .utils.health_check import get_health_status

    health_status = get_health_status(state.memory())
    if state.as_json:
        emit(health_status)
    else:
        for component, entry in health_status.items():
            mark = 'ok' if entry.get('healthy') else f"FAILED {entry.get('error', '')}".rstrip()
            click.echo(f"{component}: {mark} ({entry.get('service')})")
    if not all(entry.get('healthy') for entry in health_status.values()):
        raise SystemExit(1)


def main():
    cli(prog_name='structmem')


if __name__ == '__main__':
    main()
