import math
import random
import threading
from typing import NamedTuple
from urllib.parse import unquote

from ..http.model import HTTPRequestError


class WeightedOutcome(NamedTuple):
	"""A status code, and its relative chance of being picked."""

	weight: float
	code: int


def parseCode(text: str) -> int:
	try:
		code = int(text.strip())
	except ValueError as e:
		raise HTTPRequestError(f"Invalid status code: {text}", status=400) from e
	if not (100 <= code <= 999):
		raise HTTPRequestError(f"Invalid status code: {text}", status=400)
	return code


def parseOutcomes(text: str) -> list[WeightedOutcome]:
	"""Parses a (percent-encoded) list of comma-separated status codes,
	each with an optional `:weight`, the weight defaulting to 1."""
	res: list[WeightedOutcome] = []
	for item in unquote(text).split(","):
		code_text, sep, weight_text = item.partition(":")
		code = parseCode(code_text)
		weight: float = 1.0
		if sep:
			try:
				weight = float(weight_text)
			except ValueError as e:
				raise HTTPRequestError(
					f"Invalid weight for status {code}: {weight_text}", status=400
				) from e
			if weight < 0 or not math.isfinite(weight):
				raise HTTPRequestError(
					f"Invalid weight for status {code}: {weight_text}", status=400
				)
		res.append(WeightedOutcome(weight, code))
	return res


class StatusSelector:
	"""Picks a status code among weighted outcomes, each being picked with a
	probability proportional to its weight. The selector is meant to be
	shared, and uses a single random generator that can be seeded."""

	def __init__(self, rng: random.Random | None = None) -> None:
		self.rng: random.Random = rng or random.Random()
		self.lock: threading.Lock = threading.Lock()

	def select(self, outcomes: list[WeightedOutcome]) -> int:
		total: float = sum(_.weight for _ in outcomes)
		if not outcomes or total <= 0:
			raise HTTPRequestError("No status code can be picked", status=400)
		with self.lock:
			draw: float = self.rng.random() * total
		cumulative: float = 0.0
		for outcome in outcomes:
			cumulative += outcome.weight
			if draw < cumulative:
				return outcome.code
		# Rounding may leave the draw just above the last sum
		return [_ for _ in outcomes if _.weight > 0][-1].code

	def choose(self, codes: str) -> int:
		"""Returns the status code for the given `/status/{codes}` value. A
		single code without weight is returned as is, without a draw."""
		text = unquote(codes)
		if "," not in text and ":" not in text:
			return parseCode(text)
		return self.select(parseOutcomes(codes))


# EOF
