from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from ledgersync.statement import (
    detect_delimiter,
    normalize_header,
    parse_date,
    parse_installment,
    parse_money,
    parse_statement,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("R$ 10,00", Decimal("10.00")),
        ("42.10", Decimal("42.10")),
        ("-5,5", Decimal("-5.5")),
        ("", None),
        ("abc", None),
    ],
)
def test_parse_money(text, expected) -> None:
    assert parse_money(text) == expected


def test_parse_date_formats() -> None:
    assert parse_date("2024-03-05") == dt.date(2024, 3, 5)
    assert parse_date("05/03/2024") == dt.date(2024, 3, 5)
    assert parse_date("31/02/2024") is None
    assert parse_date("March 5") is None


def test_parse_installment_forms() -> None:
    assert parse_installment("2/6") == (2, 6)
    assert parse_installment("3") == (3, None)
    assert parse_installment("Única") == (None, None)
    assert parse_installment("0/3") == (None, None)
    assert parse_installment("") == (None, None)


def test_normalize_header() -> None:
    assert normalize_header("Descrição") == "DESCRICAO"
    assert normalize_header("Valor (R$)") == "VALOR_R"


def test_detect_delimiter_ignores_quoted_commas() -> None:
    assert detect_delimiter('Data;Descrição;Valor\n"a,b";x;1') == ";"
    assert detect_delimiter('"x,y,z"\t1\t2') == "\t"
    assert detect_delimiter("a,b,c") == ","
    assert detect_delimiter("") == ";"


def test_parse_statement_with_header() -> None:
    text = (
        "Data;Estabelecimento;Valor;Parcela;Final do Cartão\n"
        "05/03/2024;Mercado XYZ;42,10;Única;1234\n"
        "06/03/2024;Loja Roupas;100,00;2/5;1234\n"
        "07/03/2024;Pagamento recebido;-500,00;;\n"
        "\n"
        "sem data;Ignorar;10,00;;\n"
    )

    lines = parse_statement(text)

    assert len(lines) == 2
    first, second = lines
    assert first.date == dt.date(2024, 3, 5)
    assert first.description == "Mercado XYZ"
    assert first.amount == Decimal("42.10")
    assert first.installment_index is None
    assert first.card_last_digits == "1234"
    assert (second.installment_index, second.installment_total) == (2, 5)


def test_parse_statement_without_header_uses_default_columns() -> None:
    text = "2024-03-05,Coffee,\"1,234.50\",1,3,lunch,9876\n"

    lines = parse_statement(text)

    assert len(lines) == 1
    line = lines[0]
    assert line.amount == Decimal("1234.50")
    assert (line.installment_index, line.installment_total) == (1, 3)
    assert line.note == "lunch"
    assert line.card_last_digits == "9876"


def test_total_column_alone() -> None:
    text = "Date,Description,Amount,Installments\n2024-03-05,Gym,90.00,12\n"

    line = parse_statement(text)[0]

    assert line.installment_index is None
    assert line.installment_total == 12
