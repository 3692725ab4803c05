import asyncio
import time

import pytest

from httpmirror.features.pacing import (
	ByteRange,
	DripPlan,
	RangeNotSatisfiable,
	drip,
	ranged,
	synthesize,
)
from httpmirror.http.model import FLUSH_STREAM, HTTPRequestError


class Clock:
	"""Records the pauses instead of sleeping."""

	def __init__(self) -> None:
		self.pauses: list[float] = []

	async def sleep(self, delay: float) -> None:
		self.pauses.append(delay)


def collect(stream) -> list:
	async def main():
		return [_ async for _ in stream]

	return asyncio.run(main())


def chunks(atoms: list) -> list[bytes]:
	return [_ for _ in atoms if _ is not FLUSH_STREAM]


# -----------------------------------------------------------------------------
#
# DRIP
#
# -----------------------------------------------------------------------------


def test_drip_plan_clamps():
	plan = DripPlan.Make(numbytes=-5, duration=1000, delay=-1)
	assert plan == DripPlan(numbytes=0, duration=60.0, delay=0.0, code=200)
	plan = DripPlan.Make(numbytes=100 * 1024 * 1024, duration=0, delay=100)
	assert plan.numbytes == 10 * 1024 * 1024
	assert plan.duration == 0.1
	assert plan.delay == 10.0
	assert DripPlan.Make(delay=20, maxDelay=5).delay == 5


def test_drip_plan_rejects_invalid_code():
	for code in (0, 99, 1000, -200):
		with pytest.raises(HTTPRequestError) as e:
			DripPlan.Make(code=code)
		assert e.value.status == 400


def test_drip_plan_chunks():
	plan = DripPlan.Make(numbytes=10, duration=2, delay=0)
	assert plan.chunkCount == 20
	assert plan.chunkSize == 1
	plan = DripPlan.Make(numbytes=1000, duration=1, delay=0)
	assert plan.chunkCount == 10
	assert plan.chunkSize == 100
	plan = DripPlan.Make(numbytes=7, duration=0.3, delay=0)
	assert plan.chunkCount == 3
	assert plan.chunkSize == 3
	plan = DripPlan.Make(numbytes=5, duration=0.15, delay=0)
	assert plan.chunkCount == 1
	assert plan.chunkSize == 5


def test_drip_spreads_single_bytes():
	clock = Clock()
	atoms = collect(drip(DripPlan.Make(10, 2, 0), sleep=clock.sleep))
	assert chunks(atoms) == [b"*"] * 10
	# Every chunk is followed by a flush
	assert atoms[1::2] == [FLUSH_STREAM] * 10
	assert clock.pauses == [0.2] * 10
	assert sum(clock.pauses) == pytest.approx(2.0)


def test_drip_sends_chunks_at_interval():
	clock = Clock()
	atoms = collect(drip(DripPlan.Make(7, 0.3, 0), fill=b"x", sleep=clock.sleep))
	assert chunks(atoms) == [b"xxx", b"xxx", b"x"]
	assert clock.pauses == [0.1] * 3


def test_drip_without_bytes():
	clock = Clock()
	assert collect(drip(DripPlan.Make(0, 2, 0), sleep=clock.sleep)) == []
	assert clock.pauses == []


def test_drip_timing():
	started = time.monotonic()
	atoms = collect(drip(DripPlan.Make(numbytes=10, duration=2, delay=0)))
	elapsed = time.monotonic() - started
	assert sum(len(_) for _ in chunks(atoms)) == 10
	assert 1.9 <= elapsed <= 2.5


# -----------------------------------------------------------------------------
#
# RANGES
#
# -----------------------------------------------------------------------------


def test_range_full_by_default():
	for header in (None, "", "items=0-10", "bytes", "bytes=", "bytes=-"):
		span = ByteRange.Parse(header, 100)
		assert span == ByteRange(0, 99, 100)
		assert not span.isPartial
		assert span.size == 100


def test_range_bounds():
	span = ByteRange.Parse("bytes=10-19", 100)
	assert (span.start, span.end, span.size) == (10, 19, 10)
	assert span.isPartial
	assert span.contentRange == "bytes 10-19/100"
	assert ByteRange.Parse("bytes=90-", 100) == ByteRange(90, 99, 100)
	assert ByteRange.Parse("bytes=-10", 100) == ByteRange(90, 99, 100)
	assert ByteRange.Parse("bytes=-500", 100) == ByteRange(0, 99, 100)
	assert ByteRange.Parse(" Bytes = 0-0 ", 100) == ByteRange(0, 0, 100)


def test_range_covering_everything_is_not_partial():
	span = ByteRange.Parse("bytes=0-9999", 10000)
	assert not span.isPartial
	assert span.size == 10000


def test_range_first_of_many():
	assert ByteRange.Parse("bytes=0-4, 10-20", 100) == ByteRange(0, 4, 100)


def test_range_not_satisfiable():
	for header in ("bytes=100-1", "bytes=0-100", "bytes=100-", "bytes=-0"):
		with pytest.raises(RangeNotSatisfiable) as e:
			ByteRange.Parse(header, 100)
		assert e.value.status == 416
		assert e.value.headers == {"Content-Range": "bytes */100"}


def test_range_malformed():
	for header in ("bytes=a-b", "bytes=1-x", "bytes=-y", "bytes=--1"):
		with pytest.raises(HTTPRequestError) as e:
			ByteRange.Parse(header, 100)
		assert e.value.status == 400


def test_ranged_chunks():
	payload = synthesize(100)
	span = ByteRange(10, 54, 100)
	atoms = collect(ranged(payload, span, 20))
	assert [len(_) for _ in chunks(atoms)] == [20, 20, 5]
	assert b"".join(chunks(atoms)) == payload[10:55]
	assert atoms.count(FLUSH_STREAM) == 3


def test_ranged_pauses_between_chunks():
	clock = Clock()
	payload = synthesize(30)
	atoms = collect(
		ranged(payload, ByteRange.Full(30), 10, pause=0.5, sleep=clock.sleep)
	)
	assert len(chunks(atoms)) == 3
	assert clock.pauses == [0.5, 0.5]


def test_synthesize():
	assert synthesize(30) == b"abcdefghijklmnopqrstuvwxyzabcd"
	assert synthesize(0) == b""
	assert synthesize(64, seed=1) == synthesize(64, seed=1)
	assert synthesize(64, seed=1) != synthesize(64, seed=2)
	assert len(synthesize(64, seed=3)) == 64


# EOF
