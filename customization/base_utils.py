# customization/base_utils.py

import json
import re
from collections import OrderedDict

import commentjson
import yaml
from json_repair import repair_json

from customization.config import logger


class JsonParsingError(Exception):
    pass


JSON_REPAIR_PROMPT = """
I encountered an issue while parsing the following JSON data. Here is the original JSON string:
```
{json_str}
```
The error message was: {error}
Can you fix it?

Please return the corrected JSON string and nothing else, as further comments would break the JSON parsing.
If you think the JSON is correct, please return the JSON as it is. Again, no further comments.
"""


def _escape_string_segment(match) -> str:
    content = match.group(1)
    # unescaped backslashes that do not start a valid escape sequence
    content = re.sub(r'(?<!\\)\\(?![bfnrtu"\\/])', r'\\\\', content)
    # literal newlines inside strings
    content = re.sub(r'(?<!\\)\n', r'\\n', content)
    content = re.sub(r'(?<!\\)"', r'\"', content)
    return f'"{content}"'


def sanitize_json_string(input_str: str) -> str:
    """
    Best-effort cleanup of LLM-emitted JSON: code fences, // and /* */ comments,
    raw newlines and stray backslashes inside string literals.
    """
    input_str = clean_triple_backticks(input_str)
    input_str = re.sub(r'//.*?$|/\*.*?\*/', '', input_str, flags=re.MULTILINE | re.DOTALL)
    return re.sub(r'(?<!\\)"((?:[^"\\]|\\.)*?)"', _escape_string_segment, input_str, flags=re.DOTALL)


def clean_triple_backticks(code) -> str:
    pattern = r'```[a-zA-Z]*\n?|```\n?'
    return re.sub(pattern, '', code)


def _try_load(json_str: str, ensure_ordered: bool):
    err = ""
    try:
        if ensure_ordered:
            return commentjson.loads(clean_triple_backticks(json_str), object_pairs_hook=OrderedDict), ""
        return commentjson.loads(clean_triple_backticks(json_str)), ""
    except Exception as e:
        err = str(e)
    try:
        data = yaml.safe_load(sanitize_json_string(json_str))
        if isinstance(data, (dict, list)):
            return data, ""
        err += "\n--\nYAML fallback did not produce an object"
    except Exception as e:
        err += "\n--\n" + str(e)
    return None, err


class BaseUtils():
    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None):
        COLOR_CODES = {
            'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35', 'cyan': '36',
            'bright_red': '91', 'bright_green': '92', 'bright_yellow': '93', 'bright_cyan': '96',
        }
        if color and color.lower() in COLOR_CODES:
            text = f"\033[{COLOR_CODES[color.lower()]}m{text}\033[0m"
        logger.info(str(text))
        return False

    def clean_triple_backticks(self, code) -> str:
        return clean_triple_backticks(code)

    def load_fault_tolerant_json(self, json_str, ensure_ordered=False, llm=None):
        """
        Parse JSON emitted by an LLM.

        Tries, in order: commentjson, YAML on a sanitized copy, json_repair, and finally
        one repair round through `llm` (anything with `.invoke(prompt) -> str`) when given.
        Raises JsonParsingError when everything fails.
        """
        if not isinstance(json_str, str) or not json_str.strip():
            raise JsonParsingError("load_fault_tolerant_json: empty input")

        data, err = _try_load(json_str, ensure_ordered)
        if data is not None:
            return data

        r_data, r_err = _try_load(repair_json(json_str), ensure_ordered)
        if r_data:
            return r_data

        if llm is None:
            raise JsonParsingError(f"load_fault_tolerant_json: JSON parsing failed: {err}")

        self.color_print(f"load_fault_tolerant_json: JSON parsing failed: {r_err}. \nTrying LLM recovery...", color="red")
        repaired = llm.invoke(self.unsafe_string_format(JSON_REPAIR_PROMPT, json_str=json_str, error=r_err))
        r_data, r_err = _try_load(repaired, ensure_ordered)
        if r_data is not None:
            return r_data
        raise JsonParsingError(f"load_fault_tolerant_json: JSON parsing failed: {r_err}")

    def dump_json(self, data) -> str:
        return json.dumps(data, ensure_ascii=False, indent=2)

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Replaces only the {placeholders} named in kwargs, leaving every other brace untouched,
        so JSON examples inside prompt templates survive formatting.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        result = re.sub(r'\{(\w+)\}', replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Placeholders left unformatted in unsafe_string_format: {', '.join(missing_keys)}")
        return result
