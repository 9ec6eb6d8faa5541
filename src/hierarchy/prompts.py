"""Prompt templates for the hierarchical (task / event) pass."""

from __future__ import annotations

import json

from src.annotation.client import Message
from src.hierarchy.models import Window

HIERARCHY_SYSTEM_PROMPT = """\
You are a teaching-content analysis assistant. You organise an annotated \
classroom transcript into a three-level JSON structure:

1. Task: a teaching module, a natural unit of lesson content. A lesson \
usually has 3 to 5 tasks.
2. Event: a teaching activity inside a task, such as "teacher explanation", \
"question and answer", "transition", "class discussion" or "experiment \
observation".
3. Sentences: the annotated sentences belonging to the event, each with its \
time range and speaker probabilities.

The first sentences you receive may repeat the end of the previous excerpt \
to give context. If the excerpt continues a task or event already under way, \
continue it under the same task title and event type instead of starting a \
new one.

Output strictly this JSON shape:

[
  {
    "task_title": "task title (inferred)",
    "events": [
      {
        "event_type": "event type (teacher explanation, question and answer, ...)",
        "summary": "one-line summary of the activity",
        "sentences": [
          {"start": 0.0, "end": 4.0, "text": "...", "speaker_probabilities": {"teacher": 1.0, "student": 0.0}}
        ]
      }
    ]
  }
]

Rules:
- Split tasks and events by meaning, never by a fixed length or duration.
- Make event types specific; do not use "unknown" or "other".
- Keep every sentence's time range, text and speaker probabilities unchanged, \
in the original order.
- Output only the JSON, with no explanation or commentary.
"""

HIERARCHY_USER_PROMPT = """\
Here are the lesson sentences (JSON array):

```json
{sentences}
```

Organise them into the three-level JSON structure, strictly following the format."""


def build_hierarchy_messages(window: Window) -> list[Message]:
    sentences = json.dumps([s.to_dict() for s in window.sentences], ensure_ascii=False, indent=2)
    return [
        {"role": "system", "content": HIERARCHY_SYSTEM_PROMPT},
        {"role": "user", "content": HIERARCHY_USER_PROMPT.format(sentences=sentences)},
    ]
