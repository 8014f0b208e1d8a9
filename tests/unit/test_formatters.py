"""
Unit tests for Brazilian formatting helpers.
"""

from now24.utils.formatters import money_br


class TestMoneyBr:
    def test_formats_centavos(self):
        assert money_br(4900) == 'R$ 49,00'
        assert money_br(5) == 'R$ 0,05'

    def test_thousands_separator(self):
        assert money_br(123456) == 'R$ 1.234,56'
        assert money_br(100000000) == 'R$ 1.000.000,00'

    def test_negative(self):
        assert money_br(-300) == '-R$ 3,00'

    def test_empty_values(self):
        assert money_br(None) == '-'
        assert money_br('') == '-'
        assert money_br('abc') == '-'
