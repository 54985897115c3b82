"""Narration sync — text/audio synchronization engine for read-along playback.

WHY: Speech synthesis gives back audio, sometimes with per-character
timings and sometimes without. A reader UI needs to know which word is
being spoken at every moment, across many audio chunks, while the user
seeks, changes speed and pauses. This package owns that timing problem.

HOW: Three-stage pipeline — estimate (weight model + chunker), refine
(provider character alignment or acoustic segmentation), play (a
controller that treats chunked audio as one continuous timeline). Each
stage is independently testable.

RULES:
- Every timing source produces the same WordUnit IR
- Refined timings never rewrite a table while its clock is running
- Rendering, synthesis and storage are collaborators passed in by the host
"""

__version__ = "0.1.0"
