"""
Compensated summation.

Implements the Kahan-Babuska-Neumaier (KBN) algorithm on numpy arrays: each
element of the accumulator is an independent running sum carrying its own
correction term, so one accumulator can hold a whole matrix of sums.
"""

import math

import numpy as np

__all__ = ['CompensatedSum', 'naive_sum']


class CompensatedSum:
    """
    Elementwise KBN accumulator.

    Parameters
    ----------
    shape : int or tuple of int, optional
        Shape of the accumulated quantity. Default is a scalar.
    dtype : numpy dtype, optional
        Floating point type of the running sums. Default float64.

    Examples
    --------
    >>> acc = CompensatedSum()
    >>> for v in [1e16, 1.0, -1e16]:
    ...     acc.add(v)
    >>> float(acc.value())
    1.0
    """

    def __init__(self, shape=(), dtype=np.float64):
        self.total = np.zeros(shape, dtype=dtype)
        self.carry = np.zeros(shape, dtype=dtype)

    @property
    def shape(self):
        return self.total.shape

    def add(self, value):
        """Add ``value`` (broadcast to the accumulator shape) to every running sum."""
        value = np.asarray(value, dtype=self.total.dtype)
        running = self.total
        new_total = running + value
        # the rounding error of the addition is recovered from the larger operand
        self.carry += np.where(
            np.abs(running) >= np.abs(value),
            (running - new_total) + value,
            (value - new_total) + running,
        )
        self.total = new_total
        return self

    def add_many(self, values):
        """
        Add a batch of terms to every running sum.

        ``values`` has the accumulator shape plus one trailing axis that runs
        over the terms. Each element's batch is summed exactly with
        ``math.fsum``; the rounded batch sum is added like a single term and
        the rounding remainder goes to the carry. A batch of one term is the
        same as ``add``.
        """
        values = np.asarray(values, dtype=self.total.dtype)
        if values.shape[:-1] != self.shape:
            raise ValueError(f"Cannot add terms of shape {values.shape} to an accumulator of shape {self.shape}")

        rows = values.reshape(-1, values.shape[-1]).tolist()
        head = np.empty(len(rows), dtype=self.total.dtype)
        tail = np.zeros(len(rows), dtype=self.total.dtype)
        for k, row in enumerate(rows):
            head[k] = math.fsum(row)
            if math.isfinite(head[k]):
                row.append(-head[k])
                tail[k] = math.fsum(row)

        self.add(head.reshape(self.shape))
        self.carry += tail.reshape(self.shape)
        return self

    def merge(self, other):
        """
        Fold another accumulator into this one.

        Used to combine per-partition accumulators; the other running total is
        added with the same compensation rule and its carry joins ours.
        """
        if other.shape != self.shape:
            raise ValueError(f"Cannot merge accumulators of shape {other.shape} and {self.shape}")
        self.carry += other.carry
        self.add(other.total)
        return self

    def value(self):
        """Return the compensated total."""
        return self.total + self.carry

    def __repr__(self):
        return f"CompensatedSum(shape={self.shape})"


def naive_sum(values):
    """Plain left-to-right summation, kept as a reference for rounding comparisons."""
    total = 0.0
    for v in values:
        total += float(v)
    return total
