import random
from collections import Counter

import pytest

from httpmirror.features.status import (
	StatusSelector,
	WeightedOutcome,
	parseOutcomes,
)
from httpmirror.http.model import HTTPRequestError


def test_parse_outcomes():
	assert parseOutcomes("200") == [WeightedOutcome(1.0, 200)]
	assert parseOutcomes("200:0.3,500:0.7,301") == [
		WeightedOutcome(0.3, 200),
		WeightedOutcome(0.7, 500),
		WeightedOutcome(1.0, 301),
	]
	assert parseOutcomes("200%2C500") == [
		WeightedOutcome(1.0, 200),
		WeightedOutcome(1.0, 500),
	]


def test_parse_outcomes_rejects_invalid():
	for text in ("", "abc", "200,", "99", "1000", "200:x", "200:-1", "200:inf"):
		with pytest.raises(HTTPRequestError) as e:
			parseOutcomes(text)
		assert e.value.status == 400


def test_single_code_is_returned_as_is():
	rng = random.Random(0)
	state = rng.getstate()
	selector = StatusSelector(rng)
	for _ in range(10):
		assert selector.choose("418") == 418
	# No draw was made
	assert rng.getstate() == state


def test_single_weighted_code():
	selector = StatusSelector(random.Random(1))
	assert {selector.choose("201:5") for _ in range(20)} == {201}


def test_zero_weights_are_never_picked():
	selector = StatusSelector(random.Random(2))
	outcomes = parseOutcomes("200:0,500:1,404:0")
	assert {selector.select(outcomes) for _ in range(500)} == {500}


def test_all_zero_weights_fail():
	selector = StatusSelector(random.Random(3))
	with pytest.raises(HTTPRequestError) as e:
		selector.choose("200:0,500:0")
	assert e.value.status == 400


def test_weighted_proportions():
	selector = StatusSelector(random.Random(42))
	outcomes = parseOutcomes("200:0.3,500:0.7")
	n = 10_000
	counts = Counter(selector.select(outcomes) for _ in range(n))
	assert set(counts) == {200, 500}
	expected = {200: 0.3 * n, 500: 0.7 * n}
	chi2 = sum((counts[k] - v) ** 2 / v for k, v in expected.items())
	# Critical value for one degree of freedom at p=0.001
	assert chi2 < 10.83


def test_seeded_selectors_agree():
	a = StatusSelector(random.Random(7))
	b = StatusSelector(random.Random(7))
	codes = "200:1,201:2,500:3"
	assert [a.choose(codes) for _ in range(50)] == [b.choose(codes) for _ in range(50)]


# EOF
