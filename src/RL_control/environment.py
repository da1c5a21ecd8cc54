"""
Environment helpers for the split-AC plant simulator.
"""

import contextlib
import os
from typing import Iterator

from hvaclib.hvac_dummy import HvacDummy as Plant


@contextlib.contextmanager
def suppress_output() -> Iterator[None]:
    """Send stdout to the null device for the duration of the block."""
    with open(os.devnull, 'w') as devnull, contextlib.redirect_stdout(devnull):
        yield


def create_plant(debug: bool = False, seed: int | None = None) -> Plant:
    """Create a plant instance; its debug prints are swallowed unless ``debug``."""
    if debug:
        return Plant(seed=seed, debug=True)
    with suppress_output():
        return Plant(seed=seed)
