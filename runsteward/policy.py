"""
Existence policy - is our run present, absent, or blocked by a foreign run?

Decision table, keyed by (program RUNNING, our run correlated, multiple runs
allowed):

    running  correlated  allow_multiple  ->  decision
    -------  ----------  --------------      ----------
    False    *           *                   NOT_EXISTS
    True     True        *                   EXISTS
    True     False       True                NOT_EXISTS
    True     False       False               BLOCKED

BLOCKED means another run occupies the program; reporting it as absent
would make the caller start a second run on a busy program.
"""

from enum import Enum


class Existence(str, Enum):
    """Outcome of an existence check."""
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    BLOCKED = "blocked"


EXISTENCE_TABLE: dict[tuple[bool, bool, bool], Existence] = {
    (False, False, False): Existence.NOT_EXISTS,
    (False, False, True): Existence.NOT_EXISTS,
    (False, True, False): Existence.NOT_EXISTS,
    (False, True, True): Existence.NOT_EXISTS,
    (True, True, False): Existence.EXISTS,
    (True, True, True): Existence.EXISTS,
    (True, False, True): Existence.NOT_EXISTS,
    (True, False, False): Existence.BLOCKED,
}


def decide_existence(program_running: bool, correlated: bool, allow_multiple_runs: bool) -> Existence:
    """
    Look up the existence decision.

    Args:
        program_running: The program's aggregate status is RUNNING
        correlated: A RUNNING run carrying our identity was found
        allow_multiple_runs: Concurrent runs of the program are acceptable

    Returns:
        The Existence decision from EXISTENCE_TABLE
    """
    return EXISTENCE_TABLE[(bool(program_running), bool(correlated), bool(allow_multiple_runs))]
