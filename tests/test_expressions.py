import math

import awkward as ak
import numpy as np
import pytest

from hepfit.dataframe.expressions import FUNCTIONS, compile_expression, translate


class TestTranslate:
    def test_logical_operators(self):
        text = translate("a && !b || c")
        assert "and" in text
        assert "not" in text
        assert "or" in text
        assert "&&" not in text

    def test_not_equal_is_kept(self):
        assert translate("a != b") == "a != b"

    def test_literals_and_namespaces(self):
        assert translate("true") == "True"
        assert translate("TMath::Pi()") == "TMath_Pi()"


class TestCompileExpression:
    def test_columns(self):
        expr = compile_expression("nMuon == 2 && Muon_pt[0] > 20")
        assert expr.columns == ("nMuon", "Muon_pt")

    def test_functions_are_not_columns(self):
        expr = compile_expression("sqrt(x * x + y * y)")
        assert expr.columns == ("x", "y")

    def test_compound_selection(self):
        expr = compile_expression("x > 1 && x < 3")
        result = expr.evaluate({"x": np.array([0.0, 2.0, 4.0])})
        np.testing.assert_array_equal(result, [False, True, False])

    def test_chained_comparison(self):
        expr = compile_expression("1 < x < 3")
        result = expr.evaluate({"x": np.array([0.0, 2.0, 4.0])})
        np.testing.assert_array_equal(result, [False, True, False])

    def test_negation(self):
        expr = compile_expression("!(x > 1)")
        result = expr.evaluate({"x": np.array([0.0, 2.0])})
        np.testing.assert_array_equal(result, [True, False])

    def test_element_access_on_collections(self):
        expr = compile_expression("Muon_charge[0] != Muon_charge[1]")
        charges = ak.Array([[1, -1], [1, 1], [-1, 1]])
        assert ak.to_list(expr.evaluate({"Muon_charge": charges})) == [True, False, True]

    def test_collection_reductions(self):
        pt = ak.Array([[1.0, 2.0], [], [5.0]])
        np.testing.assert_array_equal(compile_expression("Sum(pt)").evaluate({"pt": pt}), [3.0, 0.0, 5.0])
        np.testing.assert_array_equal(compile_expression("Length(pt)").evaluate({"pt": pt}), [2, 0, 1])
        np.testing.assert_array_equal(compile_expression("Max(pt)").evaluate({"pt": pt}), [2.0, np.nan, 5.0])

    def test_conditional_expression(self):
        expr = compile_expression("x if x > 0 else 0")
        result = expr.evaluate({"x": np.array([-1.0, 2.0])})
        np.testing.assert_array_equal(result, [0.0, 2.0])

    def test_element_access_past_the_end_is_missing(self):
        expr = compile_expression("pt[1]")
        assert ak.to_list(expr.evaluate({"pt": ak.Array([[1.0, 2.0], [3.0], []])})) == [2.0, None, None]

    def test_pi(self):
        assert compile_expression("TMath::Pi()").evaluate({}) == pytest.approx(math.pi)

    def test_compiled_once(self):
        assert compile_expression("x > 0") is compile_expression("x > 0")

    @pytest.mark.parametrize("source", [
        "",
        "   ",
        "x ? 1 : 2",
        "foo(x)",
        "__import__('os')",
        "x.real",
        "x[i]",
        "[x for x in y]",
        "sqrt(x=1)",
    ])
    def test_invalid_expressions(self, source):
        with pytest.raises(ValueError):
            compile_expression(source)


class TestShortCircuit:
    @pytest.fixture
    def columns(self):
        return {
            "nMuon": np.array([1, 2, 0, 2]),
            "Muon_charge": ak.Array([[1], [1, -1], [], [1, 1]]),
        }

    def test_and_skips_short_collections(self, columns):
        expr = compile_expression("nMuon == 2 && Muon_charge[0] != Muon_charge[1]")
        np.testing.assert_array_equal(expr.evaluate(columns), [False, True, False, False])

    def test_or_skips_decided_entries(self, columns):
        expr = compile_expression("nMuon != 2 || Muon_charge[0] == Muon_charge[1]")
        np.testing.assert_array_equal(expr.evaluate(columns), [True, False, True, True])

    def test_right_operand_sees_only_undecided_entries(self, monkeypatch):
        seen = []

        def record(values):
            seen.append(np.asarray(values).copy())
            return values

        monkeypatch.setitem(FUNCTIONS, "record", record)
        expr = compile_expression("x > 1 && record(x) < 10")
        result = expr.evaluate({"x": np.array([0.0, 2.0, 20.0, 1.0])})
        compile_expression.cache_clear()
        np.testing.assert_array_equal(result, [False, True, False, False])
        np.testing.assert_array_equal(seen[0], [2.0, 20.0])

    def test_every_entry_decided_by_the_left_operand(self, columns):
        expr = compile_expression("nMuon > 5 && Muon_charge[3] > 0")
        np.testing.assert_array_equal(expr.evaluate(columns), [False] * 4)

    def test_constant_operands(self):
        assert compile_expression("true && !false").evaluate({})


class TestInterpreter:
    def test_no_builtins_reachable(self):
        with pytest.raises(ValueError, match="Unknown function"):
            compile_expression("open('x')")

    def test_unsupported_operator(self):
        with pytest.raises(ValueError, match="Unsupported syntax"):
            compile_expression("x @ y")

    def test_integer_arithmetic(self):
        expr = compile_expression("(x % 3) + x // 2 - x ** 2")
        x = np.arange(4)
        np.testing.assert_array_equal(expr.evaluate({"x": x}), (x % 3) + x // 2 - x ** 2)
