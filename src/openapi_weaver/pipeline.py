"""Generation pipeline: entities in, four document views out.

Fragment extraction and entity parsing run on a worker pool. Duplicate
names, referential integrity, generic instantiation and assembly then run
single-threaded in declaration order. Each stage collects all of its
diagnostics and the run stops at the first stage that produced any.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from openapi_weaver.assembler import Assembler, GenerationResult
from openapi_weaver.config import GeneratorConfig
from openapi_weaver.errors import GenerationError, WeaverError
from openapi_weaver.fragments import FragmentResolver
from openapi_weaver.generics import Monomorphizer
from openapi_weaver.parser.annotation import extract_fragments, parse_entity
from openapi_weaver.parser.base import ParsedEntity, SourceEntity
from openapi_weaver.provider import load_all, load_document
from openapi_weaver.registry import Registry
from openapi_weaver.validator import Validator

logger = logging.getLogger(__name__)


def _attach(error: WeaverError, entity: SourceEntity) -> WeaverError:
    if error.entity is None:
        error.entity = entity.name
    if error.location is None:
        error.location = entity.location
    return error


def _fail(errors: list[WeaverError], stage: str):
    logger.debug("%s failed with %d error(s)", stage, len(errors))
    raise GenerationError([e.to_diagnostic() for e in errors])


def _stamp(parsed: ParsedEntity, index: int) -> None:
    seq = 0
    for item in parsed.routes + parsed.schemas + parsed.roots + parsed.snippets:
        item.order = (index, seq)
        seq += 1


class Generator:
    """Runs one generation over a fixed set of entities."""

    def __init__(self, workers: int = 4, require_root: bool = True):
        self.workers = max(1, workers)
        self.require_root = require_root

    def _map(self, fn, items: list) -> list:
        if self.workers == 1 or len(items) < 2:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            return list(pool.map(fn, items))

    def _gather(self, fn, items: list) -> tuple[list[WeaverError], int]:
        errors, clashes = [], 0
        for batch, count in self._map(fn, items):
            errors.extend(batch)
            clashes += count
        return errors, clashes

    def generate(self, entities: list[SourceEntity], includes: list[dict] | None = None) -> GenerationResult:
        """Return all four views, or raise GenerationError with every diagnostic of the failing stage."""
        registry = Registry()
        indexed = list(enumerate(entities))

        def collect_fragments(pair) -> tuple[list[WeaverError], int]:
            index, entity = pair
            try:
                fragments = extract_fragments(entity)
            except WeaverError as e:
                return [_attach(e, entity)], 0
            clashes = 0
            for seq, fragment in enumerate(fragments):
                fragment.order = (index, seq)
                if registry.add_fragment(fragment) is not None:
                    clashes += 1
            return [], clashes

        errors, clashes = self._gather(collect_fragments, indexed)
        # Which worker saw the clash depends on scheduling; the report is rebuilt in declaration order.
        if clashes:
            errors.extend(registry.conflicts("fragment"))
        if errors:
            _fail(errors, "fragment extraction")

        resolver = FragmentResolver(registry.fragment)

        def parse(pair) -> tuple[list[WeaverError], int]:
            index, entity = pair
            try:
                parsed = resolver.resolve_entity(parse_entity(resolver.expand_entity(entity)))
            except WeaverError as e:
                return [_attach(e, entity)], 0
            _stamp(parsed, index)
            kept = []
            for schema in parsed.schemas:
                if schema.exported:
                    kept.append(schema)
                else:
                    logger.debug("'%s' has no @openapi marker; not exported", schema.name)
            parsed.schemas = kept
            return [], len(registry.add_parsed(parsed))

        errors, clashes = self._gather(parse, indexed)
        if clashes:
            errors.extend(registry.conflicts("schema", "route"))
        if errors:
            _fail(errors, "parsing")
        registry.freeze()
        logger.info(
            "registered %d route(s), %d schema(s), %d fragment(s)",
            len(registry.routes()),
            len(registry.schemas()),
            len(registry.fragments()),
        )

        errors = Validator(registry).validate()
        if errors:
            _fail(errors, "validation")

        monomorphizer = Monomorphizer(registry)
        errors = monomorphizer.run()
        if errors:
            _fail(errors, "generic instantiation")

        try:
            return Assembler(registry, monomorphizer).assemble(includes or [], self.require_root)
        except WeaverError as e:
            _fail([e], "assembly")


def generate(
    entities: list[SourceEntity],
    includes: list[dict] | None = None,
    workers: int = 4,
    require_root: bool = True,
) -> GenerationResult:
    return Generator(workers=workers, require_root=require_root).generate(entities, includes)


def run_config(config: GeneratorConfig) -> GenerationResult:
    """Load inputs and includes from disk, then generate."""
    try:
        entities = load_all(config.inputs)
        includes = [load_document(path) for path in config.includes]
    except WeaverError as e:
        _fail([e], "loading")
    logger.info("loaded %d entities and %d include(s)", len(entities), len(includes))
    return generate(entities, includes, workers=config.workers, require_root=config.require_root)
