import pandas as pd
import pytest

from adsync.core.rows import RowReadError, read_rows


def test_csv_rows_keep_strings_and_blanks(tmp_path):
    path = tmp_path / "rows.csv"
    path.write_text("prenom;nom;classe;code\nJean;Dupont;6A;007\nMarie;;;\n", encoding="utf-8-sig")

    rows = read_rows(path, delimiter=";")

    assert [r.index for r in rows] == [0, 1]
    assert rows[0]["code"] == "007"          # no numeric coercion
    assert rows[0]["NOM"] == "Dupont"        # case-insensitive access
    assert rows[1]["nom"] == ""
    assert rows[1]["classe"] == ""


def test_xlsx_rows_via_openpyxl(tmp_path):
    path = tmp_path / "rows.xlsx"
    df = pd.DataFrame(
        [{"prenom": "Jean", "nom": "Dupont", "classe": "6A"}, {"prenom": "Élodie", "nom": None, "classe": "5B"}]
    )
    df.to_excel(path, sheet_name="Eleves", index=False, engine="openpyxl")

    rows = read_rows(path, sheet="Eleves")

    assert len(rows) == 2
    assert rows[1]["prenom"] == "Élodie"
    assert rows[1]["nom"] == ""


def test_empty_csv_gives_no_rows(tmp_path):
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")
    assert read_rows(path) == []


def test_missing_file_and_missing_sheet(tmp_path):
    with pytest.raises(RowReadError):
        read_rows(tmp_path / "nope.csv")

    path = tmp_path / "rows.xlsx"
    pd.DataFrame([{"a": "1"}]).to_excel(path, index=False, engine="openpyxl")
    with pytest.raises(RowReadError):
        read_rows(path, sheet="Absent")
