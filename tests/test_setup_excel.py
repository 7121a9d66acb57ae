"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from venue_ledger import setup_excel


def test_create_master_workbook_writes_bold_headers(tmp_path):
    destination = setup_excel.create_master_workbook(tmp_path / "ledger.xlsx")

    workbook = openpyxl.load_workbook(destination)
    assert workbook.sheetnames == ["TransactionLog", "Products", "Loyalty"]
    header = workbook["TransactionLog"][1]
    assert [cell.value for cell in header] == list(setup_excel.SHEET_COLUMNS["TransactionLog"])
    assert all(cell.font.bold for cell in header)


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    destination = setup_excel.create_master_workbook(tmp_path / "ledger.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(destination)
    assert setup_excel.create_master_workbook(destination, overwrite=True) == destination


def test_load_data_file_resolves_relative_to_config(tmp_path):
    config = tmp_path / "config.ini"
    config.write_text("[System]\nDataFile = data/ledger.xlsx\n")

    assert setup_excel.load_data_file(config) == (tmp_path / "data" / "ledger.xlsx").resolve()


def test_load_data_file_requires_entry(tmp_path):
    config = tmp_path / "config.ini"
    config.write_text("[System]\nVenueName = X\n")

    with pytest.raises(KeyError):
        setup_excel.load_data_file(config)


def test_main_creates_workbook_from_config(tmp_path, capsys):
    config = tmp_path / "config.ini"
    config.write_text("[System]\nDataFile = ledger.xlsx\n")

    assert setup_excel.main(["--config", str(config)]) == 0
    assert (tmp_path / "ledger.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config), "--force"]) == 0


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "absent.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
