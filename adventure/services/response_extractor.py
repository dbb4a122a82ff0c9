# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Isolation of the JSON payload inside a raw model reply.

Reasoning models wrap their answer in thinking annotations and sometimes add
prose before or after the JSON object. This module strips the annotations
and cuts out the outermost ``{...}`` span.
"""

import re

from adventure.logging import StructuredLogger
from adventure.services.errors import ExtractionError

logger = StructuredLogger(__name__)

# Number of characters of cleaned text carried by an ExtractionError
ERROR_PREVIEW_LENGTH = 100

# Opening and closing thinking tags, including backslash-escaped delimiters
# such as \<think\> or <\/think> that some models emit inside JSON strings.
_OPEN_TAG = r'\\?<\s*think(?:ing)?\s*\\?>'
_CLOSE_TAG = r'\\?<\s*\\?/\s*think(?:ing)?\s*\\?>'
THINK_TAG_PATTERN = re.compile(
    rf'(?P<close>{_CLOSE_TAG})|(?P<open>{_OPEN_TAG})',
    re.IGNORECASE
)


def strip_thinking(text: str) -> str:
    """Remove thinking annotations and their content from model text.
    
    Handles any number of blocks, nested blocks and unpaired tags:
    - A paired block is removed together with everything it encloses.
    - An unpaired closing tag means the reply began mid-thought: the text
      before it is dropped when an answer follows it, otherwise only the
      tag is removed.
    - An unpaired opening tag is removed but its trailing text is kept,
      since an unterminated block usually still contains the answer.
    
    Args:
        text: Raw model text
        
    Returns:
        Text with thinking annotations removed, whitespace-trimmed
    """
    pieces = []
    depth = 0
    pos = 0
    outer_open_end = 0
    
    for match in THINK_TAG_PATTERN.finditer(text):
        if match.group('open'):
            if depth == 0:
                pieces.append(text[pos:match.start()])
                outer_open_end = match.end()
            depth += 1
            continue
        
        if depth > 0:
            depth -= 1
            if depth == 0:
                pos = match.end()
            continue
        
        # Unpaired closing tag
        pieces.append(text[pos:match.start()])
        if '{' in text[match.end():]:
            pieces = []
        pos = match.end()
    
    if depth > 0:
        pieces.append(THINK_TAG_PATTERN.sub('', text[outer_open_end:]))
    else:
        pieces.append(text[pos:])
    
    return ''.join(pieces).strip()


def extract_json_payload(raw_text: str) -> str:
    """Isolate the JSON object candidate inside a raw model reply.
    
    Takes the span from the first ``{`` to the last ``}`` of the text left
    after thinking annotations are stripped. This is best-effort: a reply
    with several separate objects yields a span covering all of them.
    
    Args:
        raw_text: Raw text returned by the model backend
        
    Returns:
        The JSON candidate substring, braces included
        
    Raises:
        ExtractionError: If no opening/closing brace pair exists
    """
    cleaned = strip_thinking(raw_text or "")
    
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start == -1 or end == -1 or end < start:
        logger.warning(
            "No JSON object found in model reply",
            raw_length=len(raw_text or ""),
            cleaned_length=len(cleaned)
        )
        raise ExtractionError(details=cleaned[:ERROR_PREVIEW_LENGTH])
    
    if start > 0 or end < len(cleaned) - 1:
        logger.debug(
            "Discarded text around JSON payload",
            leading_chars=start,
            trailing_chars=len(cleaned) - end - 1
        )
    
    return cleaned[start:end + 1]
