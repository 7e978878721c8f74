import random
import statistics

from visodom.rng import rand_double, rand_normal


def test_rand_double_stays_in_unit_interval():
    rng = random.Random(1)
    samples = [rand_double(rng) for _ in range(1000)]
    assert min(samples) >= 0.0
    assert max(samples) <= 1.0


def test_rand_double_is_reproducible_with_seed():
    a = [rand_double(random.Random(42)) for _ in range(3)]
    b = [rand_double(random.Random(42)) for _ in range(3)]
    assert a == b


def test_rand_double_default_source_in_range():
    value = rand_double()
    assert 0.0 <= value <= 1.0


def test_rand_normal_is_reproducible_with_seed():
    r1 = random.Random(5)
    r2 = random.Random(5)
    assert [rand_normal(r1) for _ in range(10)] == [rand_normal(r2) for _ in range(10)]


def test_rand_normal_has_standard_moments():
    rng = random.Random(123)
    samples = [rand_normal(rng) for _ in range(20000)]
    assert abs(statistics.fmean(samples)) < 0.05
    assert abs(statistics.pstdev(samples) - 1.0) < 0.05


def test_rand_normal_varies_between_draws():
    rng = random.Random(9)
    samples = {rand_normal(rng) for _ in range(50)}
    assert len(samples) == 50