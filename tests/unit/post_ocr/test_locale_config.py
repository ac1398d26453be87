import pytest

from dococr.domain.exceptions import NormalizationConfigError
from dococr.post_ocr.locale_config import LocaleConfigLoader, split_locale


def _write(directory, name, content):
    (directory / name).write_text(content, encoding="utf-8")


@pytest.mark.parametrize("raw, chain", [
    ("pl-PL", ["pl", "pl_PL"]),
    ("pl_pl", ["pl", "pl_PL"]),
    ("DE", ["de"]),
    ("", []),
    (None, []),
])
def test_split_locale(raw, chain):
    assert split_locale(raw) == chain


def test_builtin_polish_config(locale_loader):
    config = locale_loader.load("pl_PL")

    assert config.locale == "pl"
    assert config.word_repairs["N1P"] == "NIP"
    assert config.date_formats == ["DD.MM.YYYY", "DD-MM-YYYY", "DD/MM/YYYY", "YYYY-MM-DD"]
    assert config.currency_symbols["zł"] == "PLN"
    # Проверка: символы из base подмешаны через $extends
    assert config.currency_symbols["€"] == "EUR"
    assert config.decimal_separator == ","
    assert config.phone_prefix == "+48"


def test_regional_layer_overrides_language(locale_loader):
    config = locale_loader.load("en-US")

    assert config.locale == "en_US"
    assert config.date_formats[0] == "MM/DD/YYYY"
    # Проверка: остальное унаследовано от en
    assert config.word_repairs["lnvoice"] == "Invoice"
    assert config.currency_symbols["£"] == "GBP"
    assert config.phone_prefix == "+1"


def test_common_keys_not_in_result(locale_loader):
    config = locale_loader.load("xx")

    assert config.locale == "base"
    assert config.word_repairs == {}
    assert config.date_formats == ["YYYY-MM-DD"]
    assert "common_char_map" not in config.model_dump()


def test_load_is_cached(locale_loader):
    assert locale_loader.load("pl") is locale_loader.load("pl")


def test_default_locale(tmp_path):
    _write(tmp_path, "base.yaml", "locale: base\n")
    _write(tmp_path, "de.yaml", "locale: de\nphone_prefix: '+49'\n")

    loader = LocaleConfigLoader(tmp_path, default_locale="de_AT")

    assert loader.load().locale == "de"


def test_non_idempotent_table_rejected(tmp_path):
    """Тест: замена, содержащая исходный ключ, отклоняется загрузчиком."""
    _write(tmp_path, "base.yaml", "locale: base\n")
    _write(tmp_path, "pl.yaml", "locale: pl\nword_repairs:\n  zl: zlote\n")

    with pytest.raises(NormalizationConfigError) as exc_info:
        LocaleConfigLoader(tmp_path).load("pl")

    assert "повторная нормализация" in str(exc_info.value)


def test_char_map_key_must_be_single_char(tmp_path):
    _write(tmp_path, "base.yaml", "locale: base\nchar_map:\n  ab: c\n")

    with pytest.raises(NormalizationConfigError):
        LocaleConfigLoader(tmp_path).load("pl")


def test_char_map_replacement_containing_key_rejected(tmp_path):
    _write(tmp_path, "base.yaml", "locale: base\nchar_map:\n  '0': 'O0'\n")

    with pytest.raises(NormalizationConfigError):
        LocaleConfigLoader(tmp_path).load("pl")


def test_broken_yaml_rejected(tmp_path):
    _write(tmp_path, "base.yaml", "locale: [unclosed\n")

    with pytest.raises(NormalizationConfigError):
        LocaleConfigLoader(tmp_path).load("pl")


def test_dict_extends_with_override(tmp_path):
    _write(tmp_path, "base.yaml", (
        "common_currency_symbols:\n"
        "  EUR: EUR\n"
        "  $: USD\n"
        "currency_symbols: {}\n"
    ))
    _write(tmp_path, "fr.yaml", (
        "currency_symbols:\n"
        "  $extends: common_currency_symbols\n"
        "  $: CAD\n"
    ))

    config = LocaleConfigLoader(tmp_path).load("fr")

    assert config.currency_symbols == {"EUR": "EUR", "$": "CAD"}
    assert config.locale == "fr"


def test_dict_extends_list_of_keys(tmp_path):
    """Тест: $extends со списком подмешивает словари по порядку, локальные ключи последними."""
    _write(tmp_path, "base.yaml", (
        "common_a:\n"
        "  x: '1'\n"
        "  y: '2'\n"
        "common_b:\n"
        "  y: '3'\n"
        "char_map: {}\n"
    ))
    _write(tmp_path, "fr.yaml", (
        "char_map:\n"
        "  $extends: [common_a, common_b, common_missing]\n"
        "  z: '4'\n"
    ))

    config = LocaleConfigLoader(tmp_path).load("fr")

    assert config.char_map == {"x": "1", "y": "3", "z": "4"}


def test_cyrillic_lookalikes_only_for_latin_locales(locale_loader):
    """Тест: таблица кириллических двойников есть у латинских локалей, но не у base."""
    cyrillic_a = "\u0410"

    assert locale_loader.load("pl").char_map[cyrillic_a] == "A"
    assert locale_loader.load("cs").char_map[cyrillic_a] == "A"
    assert locale_loader.load("de").char_map[cyrillic_a] == "A"
    # Проверка: общие замены не потеряны при слиянии двух словарей
    assert locale_loader.load("de").char_map["\u2013"] == "-"
    assert cyrillic_a not in locale_loader.load("ru").char_map
