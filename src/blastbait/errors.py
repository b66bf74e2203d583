"""Exception types shared by the blastbait tools.

Format, identifier, alignment and checkpoint errors are fatal and reach the CLI.
Remote lookup and interactive input errors are recovered where they are raised.
"""

from __future__ import annotations


class BlastBaitError(Exception):
    """Base class for all blastbait errors."""


class FormatError(BlastBaitError):
    """Malformed FASTA/FASTQ/tabular input."""


class IdentifierError(BlastBaitError):
    """Whitespace in a sequence id, or an id that cannot be mapped to a name."""


class AlignmentError(BlastBaitError):
    """makeblastdb/blastn failed or produced rows we cannot parse."""


class RemoteLookupFailure(BlastBaitError):
    """An Entrez lookup failed or returned nothing usable."""


class InteractiveInputError(BlastBaitError):
    """Unrecognised answer at the duplicate-resolution prompt."""


class CheckpointError(BlastBaitError):
    """A checkpoint file is unreadable, corrupt or of an unknown version."""
