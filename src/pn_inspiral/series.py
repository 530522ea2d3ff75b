"""Truncated series in rational powers of an expansion variable.

A series is a finite sum of terms c * v**p * (ln v)**L that is only trusted up
to a declared maximum power of v. Every operation truncates at the smaller of
the two operand orders, so truncation is exact on exponents while coefficient
arithmetic is whatever the coefficient type provides.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Dict, Iterable, Iterator, Tuple, Union

import numpy as np

from .errors import NonInvertibleSeries, SeriesMismatchError

UNBOUNDED = math.inf

Order = Union[Fraction, float]
Key = Tuple[Fraction, int]


def as_power(p) -> Fraction:
    if isinstance(p, Fraction):
        return p
    if isinstance(p, float):
        return Fraction(p).limit_denominator(1000)
    return Fraction(p)


def as_order(order) -> Order:
    if order is None or order == UNBOUNDED:
        return UNBOUNDED
    return as_power(order)


@dataclass(frozen=True)
class Term:
    coefficient: Any
    power: Fraction
    log_power: int = 0

    @property
    def key(self) -> Key:
        return (self.power, self.log_power)


class TruncatedSeries:
    __slots__ = ("_coeffs", "max_order", "variable", "_compiled")

    def __init__(self, terms: Iterable = (), max_order=UNBOUNDED, variable: str = "v"):
        self.max_order = as_order(max_order)
        self.variable = variable
        coeffs: Dict[Key, Any] = {}
        for term in terms:
            if isinstance(term, Term):
                c, p, L = term.coefficient, term.power, term.log_power
            else:
                c, p, L = term
            p = as_power(p)
            L = int(L)
            if L < 0:
                raise ValueError(f"log_power must be non-negative, got {L}")
            if p > self.max_order:
                continue
            key = (p, L)
            if key in coeffs:
                coeffs[key] = coeffs[key] + c
            else:
                coeffs[key] = c
        self._coeffs = dict(sorted(coeffs.items()))
        self._compiled = None

    # ---- constructors ----

    @classmethod
    def identity(cls, max_order=UNBOUNDED, variable: str = "v") -> "TruncatedSeries":
        return cls([(1, Fraction(0), 0)], max_order, variable)

    @classmethod
    def constant(cls, c, max_order=UNBOUNDED, variable: str = "v") -> "TruncatedSeries":
        return cls([(c, Fraction(0), 0)], max_order, variable)

    @classmethod
    def from_coefficients(cls, coefficients: Iterable, max_order=UNBOUNDED,
                          variable: str = "v") -> "TruncatedSeries":
        """Series with integer powers 0, 1, 2, ... in the given order."""
        return cls([(c, Fraction(k), 0) for k, c in enumerate(coefficients)], max_order, variable)

    def _like(self, terms, max_order) -> "TruncatedSeries":
        return TruncatedSeries(terms, max_order, self.variable)

    # ---- inspection ----

    @property
    def terms(self) -> Tuple[Term, ...]:
        return tuple(Term(c, p, L) for (p, L), c in self._coeffs.items())

    def __iter__(self) -> Iterator[Term]:
        return iter(self.terms)

    def __len__(self) -> int:
        return len(self._coeffs)

    def keys(self) -> Tuple[Key, ...]:
        return tuple(self._coeffs)

    def coefficient(self, power, log_power: int = 0):
        return self._coeffs.get((as_power(power), int(log_power)), 0)

    @property
    def lowest_power(self) -> Fraction:
        if not self._coeffs:
            raise ValueError("empty series has no lowest power")
        return next(iter(self._coeffs))[0]

    @property
    def leading_term(self) -> Term:
        (p, L), c = next(iter(self._coeffs.items()))
        return Term(c, p, L)

    def __eq__(self, other) -> bool:
        if not isinstance(other, TruncatedSeries):
            return NotImplemented
        if self.variable != other.variable or self.max_order != other.max_order:
            return False
        if self.keys() != other.keys():
            return False
        return all(bool(self._coeffs[k] == other._coeffs[k]) for k in self._coeffs)

    __hash__ = None  # type: ignore[assignment]

    def isclose(self, other: "TruncatedSeries", rtol: float = 1e-12, atol: float = 0.0) -> bool:
        """Same order and keys, coefficients equal up to tolerance.

        Keys present in only one operand are compared against zero.
        """
        self._check_variable(other)
        if self.max_order != other.max_order:
            return False
        for key in set(self._coeffs) | set(other._coeffs):
            a = self._coeffs.get(key, 0)
            b = other._coeffs.get(key, 0)
            if not np.isclose(float(a), float(b), rtol=rtol, atol=atol):
                return False
        return True

    def __repr__(self) -> str:
        parts = []
        for (p, L), c in self._coeffs.items():
            s = f"{c!r}*{self.variable}^{p}"
            if L:
                s += f"*log({self.variable})^{L}"
            parts.append(s)
        body = " + ".join(parts) if parts else "0"
        return f"TruncatedSeries({body}; order={self.max_order})"

    # ---- algebra ----

    def _check_variable(self, other: "TruncatedSeries") -> None:
        if self.variable != other.variable:
            raise SeriesMismatchError(
                f"cannot combine series in {self.variable!r} with series in {other.variable!r}")

    def _promote(self, other) -> "TruncatedSeries":
        if isinstance(other, TruncatedSeries):
            self._check_variable(other)
            return other
        return TruncatedSeries.constant(other, self.max_order, self.variable)

    def truncate(self, order) -> "TruncatedSeries":
        order = min(as_order(order), self.max_order)
        return self._like(((c, p, L) for (p, L), c in self._coeffs.items()), order)

    def add(self, other) -> "TruncatedSeries":
        other = self._promote(other)
        order = min(self.max_order, other.max_order)
        merged = [(c, p, L) for (p, L), c in self._coeffs.items()]
        merged.extend((c, p, L) for (p, L), c in other._coeffs.items())
        return self._like(merged, order)

    def scale(self, factor) -> "TruncatedSeries":
        return self._like(((c * factor, p, L) for (p, L), c in self._coeffs.items()), self.max_order)

    def multiply(self, other) -> "TruncatedSeries":
        if not isinstance(other, TruncatedSeries):
            return self.scale(other)
        self._check_variable(other)
        order = min(self.max_order, other.max_order)
        out: Dict[Key, Any] = {}
        for (pa, La), ca in self._coeffs.items():
            for (pb, Lb), cb in other._coeffs.items():
                p = pa + pb
                if p > order:
                    continue
                key = (p, La + Lb)
                if key in out:
                    out[key] = out[key] + ca * cb
                else:
                    out[key] = ca * cb
        return self._like(((c, p, L) for (p, L), c in out.items()), order)

    def invert(self) -> "TruncatedSeries":
        """Multiplicative inverse, truncated at the order of the input.

        Writing A = a0 v^p0 (1 + X), where every term of X has positive power,
        the inverse is v^-p0 / a0 * sum_k (-X)^k. The geometric sum stops once
        the smallest power in X exceeds the remaining relative order.
        """
        if self.max_order == UNBOUNDED:
            raise NonInvertibleSeries("cannot invert a series of unbounded order")
        if not self._coeffs:
            raise NonInvertibleSeries("cannot invert an empty series")
        p0 = self.lowest_power
        leading = [(L, c) for (p, L), c in self._coeffs.items() if p == p0]
        if len(leading) != 1 or leading[0][0] != 0:
            raise NonInvertibleSeries(f"leading term at power {p0} carries a logarithm")
        a0 = leading[0][1]
        if a0 == 0:
            raise NonInvertibleSeries(f"leading coefficient at power {p0} is zero")

        relative_order = self.max_order - p0
        x = self._like(((c / a0, p - p0, L) for (p, L), c in self._coeffs.items() if p != p0),
                       relative_order)
        one = TruncatedSeries.identity(relative_order, self.variable)
        total = one
        if len(x):
            neg_x = x.scale(-1)
            step = x.lowest_power
            n_terms = int(math.floor(relative_order / step))
            power_k = one
            for _ in range(n_terms):
                power_k = power_k.multiply(neg_x)
                total = total.add(power_k)
        out_order = self.max_order - 2 * p0
        inv_a0 = 1 / a0
        return self._like(((c * inv_a0, p - p0, L) for (p, L), c in total._coeffs.items()), out_order)

    def divide(self, other) -> "TruncatedSeries":
        if not isinstance(other, TruncatedSeries):
            return self.scale(1 / other)
        self._check_variable(other)
        return self.multiply(other.invert())

    def __add__(self, other):
        return self.add(other)

    __radd__ = __add__

    def __neg__(self):
        return self.scale(-1)

    def __sub__(self, other):
        return self.add(-self._promote(other))

    def __rsub__(self, other):
        return self._promote(other).add(-self)

    def __mul__(self, other):
        return self.multiply(other)

    __rmul__ = __mul__

    def __truediv__(self, other):
        return self.divide(other)

    def __rtruediv__(self, other):
        return self._promote(other).divide(self)

    # ---- evaluation ----

    def _compile(self):
        if self._compiled is None:
            compiled = []
            for (p, L), c in self._coeffs.items():
                pe = int(p) if p.denominator == 1 else p.numerator / p.denominator
                compiled.append((c, pe, L))
            self._compiled = compiled
        return self._compiled

    def evaluate(self, x):
        """Numerical value sum c * x**p * log(x)**L."""
        total = 0
        logx = None
        for c, p, L in self._compile():
            val = c * x**p
            if L:
                if logx is None:
                    logx = np.log(x)
                val = val * logx**L
            total = total + val
        return total

    __call__ = evaluate


# ---- numerical series on a fixed power grid ----

class DenseSeries:
    """Series with float coefficients on the powers 0, step, 2 step, ...

    Logarithms are already substituted by their value at the evaluation
    point. Log factors never count toward the truncation order, so
    substituting before a truncated product or inverse gives the same value
    as substituting after. The truncation order is set by the array length.
    """

    __slots__ = ("coefficients", "step")

    def __init__(self, coefficients, step=1):
        self.coefficients = np.asarray(coefficients, dtype=float)
        self.step = as_power(step)

    def __len__(self) -> int:
        return self.coefficients.size

    @property
    def max_order(self) -> Fraction:
        return (len(self) - 1) * self.step

    def __repr__(self) -> str:
        return f"DenseSeries({self.coefficients!r}, step={self.step})"

    def _common_size(self, other: "DenseSeries") -> int:
        if self.step != other.step:
            raise SeriesMismatchError(f"power grids differ: step {self.step} vs {other.step}")
        return min(len(self), len(other))

    def add(self, other: "DenseSeries") -> "DenseSeries":
        n = self._common_size(other)
        return DenseSeries(self.coefficients[:n] + other.coefficients[:n], self.step)

    def multiply(self, other) -> "DenseSeries":
        if not isinstance(other, DenseSeries):
            return DenseSeries(self.coefficients * other, self.step)
        n = self._common_size(other)
        return DenseSeries(np.convolve(self.coefficients[:n], other.coefficients[:n])[:n], self.step)

    def invert(self) -> "DenseSeries":
        a = self.coefficients
        if a.size == 0 or a[0] == 0:
            raise NonInvertibleSeries("dense series needs a nonzero constant term to be inverted")
        out = np.zeros_like(a)
        out[0] = 1 / a[0]
        for k in range(1, a.size):
            out[k] = -np.dot(a[1:k + 1], out[k - 1::-1]) / a[0]
        return DenseSeries(out, self.step)

    def divide(self, other) -> "DenseSeries":
        if not isinstance(other, DenseSeries):
            return self.multiply(1 / other)
        return self.multiply(other.invert())

    def evaluate(self, x):
        """Value at a scalar x."""
        powers = np.arange(len(self)) * float(self.step)
        return np.dot(self.coefficients, x**powers)

    __call__ = evaluate


class SeriesLayout:
    """Fixed (power, log_power) structure of a series whose coefficients change.

    The PN expressions produce the same list of terms at every ODE step. A
    layout records once where each term lands on a dense power grid, so that
    later evaluations only move float coefficients around.
    """

    __slots__ = ("n_terms", "max_order", "step", "size", "powers", "_keep", "_index", "_log_power")

    def __init__(self, keys: Iterable, max_order):
        keys = [(as_power(p), int(L)) for p, L in keys]
        max_order = as_order(max_order)
        if max_order == UNBOUNDED:
            raise ValueError("a layout needs a finite truncation order")
        kept = [i for i, (p, _) in enumerate(keys) if p <= max_order]
        if any(keys[i][0] < 0 for i in kept):
            raise ValueError("layouts only hold non-negative powers")
        step = Fraction(1, math.lcm(1, *(keys[i][0].denominator for i in kept)))
        self.n_terms = len(keys)
        self.max_order = max_order
        self.step = step
        self.size = int(math.floor(max_order / step)) + 1
        self.powers = np.arange(self.size) * float(step)
        self._keep = np.array(kept, dtype=np.intp)
        self._index = np.array([int(keys[i][0] / step) for i in kept], dtype=np.intp)
        self._log_power = np.array([keys[i][1] for i in kept], dtype=np.int64)

    @classmethod
    def from_terms(cls, terms: Iterable, max_order) -> "SeriesLayout":
        """Layout of (coefficient, power, log_power) terms; coefficients are ignored."""
        return cls(((p, L) for _, p, L in terms), max_order)

    def _kept(self, terms) -> np.ndarray:
        c = np.array([term[0] for term in terms], dtype=float)
        if c.shape != (self.n_terms,):
            raise SeriesMismatchError(f"layout holds {self.n_terms} terms, got coefficients of shape {c.shape}")
        return c[self._keep]

    def collapse(self, terms, log_x=0.0) -> DenseSeries:
        """Dense series of the terms with log(x) = log_x substituted."""
        c = self._kept(terms)
        weights = c * float(log_x)**self._log_power
        return DenseSeries(np.bincount(self._index, weights=weights, minlength=self.size), self.step)

    def collapse_log_derivative(self, terms, log_x=0.0) -> DenseSeries:
        """As collapse, with each log(x)**L replaced by L log(x)**(L-1)."""
        c = self._kept(terms)
        L = self._log_power
        weights = c * np.where(L > 0, L * float(log_x)**np.maximum(L - 1, 0), 0.0)
        return DenseSeries(np.bincount(self._index, weights=weights, minlength=self.size), self.step)

    def series(self, terms) -> TruncatedSeries:
        """The exact series the layout stands for."""
        return TruncatedSeries(terms, self.max_order)
