"""Prompt templates for the first (sentence annotation) pass."""

from __future__ import annotations

from src.annotation.client import Message

ANNOTATION_PROMPT = """\
You are a transcription correction assistant for classroom recordings. You fix \
speech-to-text errors and estimate who spoke each sentence.

The transcript below has one unit per line in the form:

<start>s - <end>s: <original text>

For every unit:

1. Correct recognition errors (homophones, wrong terminology, repeated words, \
broken sentences, typos) so the sentence reads as natural speech while keeping \
the teaching content and the original language of the transcript.
2. Keep the time range exactly as given.
3. Estimate whether the teacher or a student said it, as probabilities \
"teacher" and "student" that sum to 1.
{noise_rules}
Return ONLY a strict JSON array, no explanations. Each item has:
- "start" (number)
- "end" (number)
- "text" (corrected text)
- "speaker_probabilities" (object with "teacher" and "student")

Example:

[
  {{
    "start": 0.0,
    "end": 4.0,
    "text": "Class, we live in a world full of sound and light.",
    "speaker_probabilities": {{"teacher": 1.0, "student": 0.0}}
  }}
]

Transcript ({count} units):
{transcript}
"""

NOISE_RULES = """\
4. Drop noise. Remove a unit entirely (do not output it) when it is:
   - a run of the same meaningless syllable or filler repeated over and over;
   - a single repeated character;
   - recording noise or a bare interjection ("um", "uh", "oh", "ah", "huh") \
with no recoverable teaching content.
   Every unit you keep must be readable and meaningful.
"""

KEEP_ALL_RULES = """\
4. Output one item for every unit, in the same order, even when it is only noise.
"""


def build_annotation_messages(transcript: str, count: int, noise_filtering: bool = True) -> list[Message]:
    """Render the first-pass prompt as a single user message."""
    prompt = ANNOTATION_PROMPT.format(
        noise_rules=NOISE_RULES if noise_filtering else KEEP_ALL_RULES,
        count=count,
        transcript=transcript,
    )
    return [{"role": "user", "content": prompt}]
