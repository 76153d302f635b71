import json
from pathlib import Path
import pytest

from slugmatch.__main__ import main
from slugmatch.loader import load_permalinks, parse_permalinks
from slugmatch.models import ItemType, PermalinkRow

_EXPORT = """id\ttype\turl
1\tpost\thttps://example.test/about-us/
2\t1\thttps://example.test/contact/
# drafts below are not published yet
3\tpage\t
20\ttag\thttps://example.test/tag/shoes/
30\tcategory\thttps://example.test/category/clothing/shoes/
40\tattachment\thttps://example.test/uploads/sunset.jpg
x\tpost\thttps://example.test/broken/
5\twidget\thttps://example.test/widget/
-4\tpost\thttps://example.test/negative/
6
"""


def test_parse_permalinks_skips_header_comments_and_junk():
    rows = parse_permalinks(_EXPORT.splitlines())
    assert [(r.item_id, r.item_type) for r in rows] == [
        (1, ItemType.POST), (2, ItemType.POST), (3, ItemType.POST),
        (20, ItemType.TAG), (30, ItemType.CATEGORY), (40, ItemType.IMAGE),
    ]
    assert rows[2] == PermalinkRow(3, ItemType.POST, None)


def test_load_permalinks_picks_delimiter(tmp_path: Path):
    csv_path = tmp_path / "export.csv"
    csv_path.write_text('1,post,https://example.test/a/\n2,tag,"https://example.test/tag/b,c/"\n', encoding="utf-8")
    rows = load_permalinks(str(csv_path))
    assert rows[1].url == "https://example.test/tag/b,c/"

    tsv_path = tmp_path / "export.tsv"
    tsv_path.write_text(_EXPORT, encoding="utf-8")
    assert len(load_permalinks(str(tsv_path))) == 6


@pytest.fixture
def export(tmp_path: Path) -> str:
    p = tmp_path / "export.tsv"
    p.write_text(_EXPORT, encoding="utf-8")
    return str(p)


def test_cli_query_json(export, capsys):
    assert main(["--import", export, "--rebuild", "--q", "/abuot-us", "--json"]) == 0
    out = capsys.readouterr().out
    assert "[import] 6 permalinks" in out
    assert "[rebuild] processed=5 success=4 failed=1" in out

    payload = json.loads(out[out.index("{"):])
    assert payload["row_type"] == "pages"
    assert payload["matches"][0]["key"] == "1|1"
    assert payload["matches"][0]["url"] == "https://example.test/about-us/"


def test_cli_table_and_exclusions(export, capsys):
    assert main(["--import", export, "--exclude", "1|post", "--no-tags", "--no-cats", "-k", "2",
                 "--q", "/abuot-us"]) == 0
    out = capsys.readouterr().out
    assert "#  Score" in out
    assert "about-us" not in out
    assert "/tag/" not in out


def test_cli_health(tmp_path: Path, export, capsys):
    db = f"sqlite:///{tmp_path / 'cli.sqlite'}"
    main(["--db", db, "--import", export, "--rebuild"])
    capsys.readouterr()

    assert main(["--db", db, "--health", "--json"]) == 0
    health = json.loads(capsys.readouterr().out)
    assert health == {"initialized": True, "coverage_ratio": 0.8, "total_entries": 4}


def test_cli_rejects_bad_item_keys(capsys):
    with pytest.raises(SystemExit):
        main(["--exclude", "nonsense"])


def test_cli_stats(export, capsys):
    assert main(["--import", export, "--rebuild", "--q", "/abuot-us", "--stats"]) == 0
    out = capsys.readouterr().out
    assert "[stats] total_entries=4" in out
    assert "[stats] posts_entries=2" in out
    # three posts (one unresolved), one tag, one category
    assert "[stats] pages_considered=5" in out
    assert "[stats] prefilter_queries=0" in out
