import pytest

from rhombus.models.context import ContextItem
from rhombus.models.document import Position, Range
from rhombus.models.symbols import Location, WorkspaceSymbol
from rhombus.services.symbol_oracle import SymbolTreeCache
from rhombus.services.symbol_search import RegexSymbolExtractor, SymbolCrossReference
from rhombus.services.workspace import Deadline

from conftest import BrokenSymbolOracle, make_symbol, write_file

SERVICE_TS = "\n".join([
    'import { UserModel, id } from "./models";',
    "",
    "export class UserService {",
    "  fetchUser = (userId) => this.repo.find(userId);",
    "}",
    "",
])


def _item(path: str, text: str) -> ContextItem:
    lines = text.split("\n")
    return ContextItem(
        file=path,
        range=Range.of(0, 0, len(lines) - 1, len(lines[-1])),
        content=text,
        importance=1.0,
        type="current",
    )


def test_regex_extractor_reports_name_offsets():
    content = "class Foo {}\nconst barBaz = 1;"
    found = RegexSymbolExtractor().extract(content)
    assert ("Foo", content.index("Foo")) in found
    assert ("barBaz", content.index("barBaz")) in found


@pytest.mark.asyncio
async def test_candidates_merge_oracle_and_regex_and_drop_short_names(tmp_path, registry, search, oracle):
    path = write_file(tmp_path, "src/service.ts", SERVICE_TS)
    oracle.symbols[path] = [make_symbol("UserService", "class", (2, 0), (4, 1), selection=(2, 13))]
    document = await registry.open(path, SERVICE_TS)

    candidates = await search.extract_candidates(document, document.full_range())
    names = [c.name for c in candidates]

    assert names.count("UserService") == 1
    assert "fetchUser" in names
    assert "./models" in names
    assert "id" not in names
    service = next(c for c in candidates if c.name == "UserService")
    assert service.position == Position(2, 13)


@pytest.mark.asyncio
async def test_candidate_positions_are_relative_to_the_document(tmp_path, registry, search):
    path = write_file(tmp_path, "a.ts", "// header\nconst alpha = 1;\nconst gamma = 2;\n")
    document = await registry.open(path, "// header\nconst alpha = 1;\nconst gamma = 2;\n")

    candidates = await search.extract_candidates(document, Range.of(2, 0, 2, 16))

    assert [(c.name, c.position) for c in candidates] == [("gamma", Position(2, 6))]


@pytest.mark.asyncio
async def test_self_definition_is_excluded_and_text_fallback_used(tmp_path, registry, search, oracle):
    path = write_file(tmp_path, "src/service.ts", SERVICE_TS)
    models = write_file(tmp_path, "src/models.ts", "export interface UserService {\n  id: string;\n}\n")
    oracle.definition_map["UserService"] = [Location(path, Range.of(2, 0, 4, 1))]
    document = await registry.open(path, SERVICE_TS)

    definitions = await search.find_definitions(document, Position(2, 13), "UserService")

    assert [(d.file, d.kind, d.range) for d in definitions] == [(models, "definition", Range.of(0, 7, 0, 7))]


@pytest.mark.asyncio
async def test_text_fallback_is_capped_at_three(tmp_path, search):
    for i in range(5):
        write_file(tmp_path, f"lib/m{i}.ts", "export function parseConfig(raw) {}\n")

    definitions = await search.text_definition_search("parseConfig")

    assert len(definitions) == 3


@pytest.mark.asyncio
async def test_text_fallback_skips_node_modules_and_matches_python(tmp_path, search):
    write_file(tmp_path, "node_modules/pkg/index.js", "function loadPlugins() {}\n")
    plugin = write_file(tmp_path, "tools/plugins.py", "def loadPlugins(path):\n    pass\n")

    definitions = await search.text_definition_search("loadPlugins")

    assert [d.file for d in definitions] == [plugin]


@pytest.mark.asyncio
async def test_oracle_definitions_are_cached(tmp_path, registry, search, oracle):
    path = write_file(tmp_path, "a.ts", "const total = sum(values);\n")
    other = write_file(tmp_path, "b.ts", "export const total = 0;\n")
    oracle.definition_map["total"] = [Location(other, Range.of(0, 13, 0, 18))]
    document = await registry.open(path, "const total = sum(values);\n")

    first = await search.find_definitions(document, Position(0, 6), "total")
    second = await search.find_definitions(document, Position(0, 6), "total")

    assert first == second
    assert first[0].file == other
    assert oracle.calls["definitions"] == 1

    search.clear_cache()
    await search.find_definitions(document, Position(0, 6), "total")
    assert oracle.calls["definitions"] == 2


@pytest.mark.asyncio
async def test_definitions_cut_short_by_the_deadline_are_not_cached(tmp_path, registry, search):
    path = write_file(tmp_path, "a.ts", "renderChart(data);\n")
    chart = write_file(tmp_path, "lib/chart.ts", "export function renderChart(data) {}\n")
    document = await registry.open(path, "renderChart(data);\n")
    deadline = Deadline()
    deadline.cancel()

    partial = await search.find_definitions(document, Position(0, 0), "renderChart", deadline)
    complete = await search.find_definitions(document, Position(0, 0), "renderChart")

    assert partial == []
    assert [d.file for d in complete] == [chart]


@pytest.mark.asyncio
async def test_find_related_caps_references_per_symbol(tmp_path, registry, search, oracle):
    text = "export function renderPage() {}\n"
    path = write_file(tmp_path, "page.ts", text)
    oracle.symbols[path] = [make_symbol("renderPage", "function", (0, 0), (0, 31), selection=(0, 16))]
    oracle.reference_map["renderPage"] = [
        Location(f"/ref{i}.ts", Range.of(i, 0, i, 10)) for i in range(8)
    ]
    await registry.open(path, text)

    result = await search.find_related(_item(path, text))

    assert len(result.references) == 5
    assert all(r.kind == "reference" and r.symbol == "renderPage" for r in result.references)


@pytest.mark.asyncio
async def test_related_symbols_follow_imports(tmp_path, search):
    dates = write_file(tmp_path, "src/dates.ts", "export function formatDate(d) {\n  return d;\n}\n")

    related = await search.imported_symbols('import { formatDate as fmt, id } from "./dates";\n')

    assert [(r.file, r.symbol) for r in related] == [(dates, "formatDate")]


@pytest.mark.asyncio
async def test_related_symbols_are_capped_at_five(tmp_path, search):
    names = [f"helperNumber{i}" for i in range(4)]
    for i in range(4):
        write_file(tmp_path, f"h{i}.ts", "\n".join(f"export function {n}() {{}}" for n in names) + "\n")

    related = await search.imported_symbols(f"import {{ {', '.join(names)} }} from './helpers';")

    assert len(related) == 5


@pytest.mark.asyncio
async def test_workspace_symbol_search_is_capped(search, oracle):
    oracle.workspace = [
        WorkspaceSymbol(f"handler{i}", "function", Location(f"/h{i}.ts", Range.of(0, 0, 0, 5)))
        for i in range(15)
    ]

    hits = await search.search_workspace_for_symbol("handler")

    assert len(hits) == 10
    assert hits[0].kind == "definition"


@pytest.mark.asyncio
async def test_failing_oracle_is_no_signal(tmp_path, workspace):
    text = "export function renderPage() {}\n"
    path = write_file(tmp_path, "page.ts", text)
    search = SymbolCrossReference(workspace, BrokenSymbolOracle(), SymbolTreeCache(BrokenSymbolOracle()))

    result = await search.find_related(_item(path, text))

    assert result.references == []
    assert await search.search_workspace_for_symbol("renderPage") == []
