"""Fourier transform utilities."""

__all__ = ["best_dimension"]


def best_dimension(n: int) -> int:
    """Smallest FFT-friendly length not smaller than ``n``.

    FFT-friendly lengths are of the form ``2**a * 3**b * 5**c``.

    Args:
        n: Minimum length (must be positive).

    Returns:
        The smallest integer ``m >= n`` whose only prime factors are 2, 3, 5.

    Example:
        ```python
        best_dimension(97)   # -> 100
        best_dimension(128)  # -> 128
        ```
    """
    if n < 1:
        raise ValueError(f"Length must be positive, got {n}")
    best = 2 * n
    n5 = 1
    while n5 < best:
        n3 = n5
        while n3 < best:
            # power of 2 part: grow until at least n
            n2 = n3
            while n2 < n:
                n2 *= 2
            if n2 == n:
                return n
            best = min(best, n2)
            n3 *= 3
        n5 *= 5
    return best
