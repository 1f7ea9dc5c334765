import json

import pytest

from hepfit.benchmark import BenchmarkConfig, BenchmarkRecord, plot_benchmark, run_benchmark, summarize, write_json
from hepfit.models import Gaussian, RealVar


def make_model():
    x = RealVar("x", 0.0, -10.0, 10.0)
    return Gaussian(x, RealVar("mean", 1.0, -5.0, 5.0), RealVar("sigma", 2.0, 0.5, 5.0))


@pytest.fixture(scope="module")
def records():
    config = BenchmarkConfig(n_events=2000, repeats=2, num_cpus=(1, 2), batch_modes=(False, True), seed=3)
    return run_benchmark(make_model, config)


class TestBenchmark:
    def test_one_record_per_fit(self, records):
        assert len(records) == 8
        assert {(r.batch_mode, r.num_cpu) for r in records} == {(False, 1), (False, 2), (True, 1), (True, 2)}
        assert all(r.n_events == 2000 for r in records)

    def test_every_configuration_finds_the_same_minimum(self, records):
        reference = records[0]
        for record in records:
            assert record.status == 0
            assert record.min_nll == pytest.approx(reference.min_nll, rel=1e-6)
            assert record.values["mean"] == pytest.approx(reference.values["mean"], abs=0.01)

    def test_summary(self, records):
        text = summarize(records)
        lines = text.splitlines()
        assert "speed-up" in lines[0]
        assert len(lines) == 2 + 4
        assert lines[2].split()[-1] == "1.00"

    def test_summary_without_records(self):
        assert summarize([]) == "No benchmark records."

    def test_json(self, records, tmp_path):
        path = write_json(records, tmp_path / "bench.json", metadata={"model": "gauss"})
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
        assert document["metadata"] == {"model": "gauss"}
        assert len(document["records"]) == 8
        assert "numba_version" in document["cpu_info"]

    def test_plot(self, records):
        ax = plot_benchmark(records)
        assert len(ax.patches) == 4

    def test_label(self):
        record = BenchmarkRecord(True, 4, 10, 0, 1.0, 1.0, 10, 0.0, 0)
        assert record.label == "batch on, 4 cpu"


@pytest.mark.parametrize("changes", [
    {"n_events": 0},
    {"repeats": 0},
    {"num_cpus": ()},
    {"num_cpus": (1, 0)},
    {"batch_modes": ()},
])
def test_invalid_config(changes):
    with pytest.raises(ValueError):
        BenchmarkConfig(**changes)
