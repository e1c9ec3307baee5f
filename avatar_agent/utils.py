# avatar_agent/utils.py
import logging
import re

logger = logging.getLogger("avatar_agent")


class Utils():
    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing {KEY} placeholders with the
        corresponding values from kwargs.

        It differs from str.format: only the keys passed in kwargs are looked
        up, so user-provided text containing braces never breaks formatting.
        Placeholders without a value are left untouched and reported.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.warning(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result

    def parse_choice(self, text: str, upper: int) -> int | None:
        """
        1-based menu choice -> 0-based index, or None when the text is not a
        plain number within 1..upper.
        """
        value = (text or "").strip()
        if not re.fullmatch(r"[0-9]+", value):
            return None
        choice = int(value)
        if choice < 1 or choice > upper:
            return None
        return choice - 1
