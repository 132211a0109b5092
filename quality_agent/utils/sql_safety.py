"""
Safety gate for generated SQL.

Every statement produced by the translation stage passes through
ensure_read_only before it may reach the database. The gate is a deny-list:
mutation keywords anywhere in the text, known injection shapes, and any
statement that does not open with WITH / SELECT / EXPLAIN / SHOW.
"""

import re
from typing import List, Tuple

from ..errors import SafetyRejection

MUTATION_KEYWORDS = (
    'insert', 'update', 'delete', 'truncate', 'drop', 'alter',
    'create', 'grant', 'revoke', 'copy', 'merge',
)

MUTATION_PATTERN = re.compile(r'\b(' + '|'.join(MUTATION_KEYWORDS) + r')\b', re.IGNORECASE)

ALLOWED_START = re.compile(r'^(with|select|explain|show)\b', re.IGNORECASE)

INJECTION_PATTERNS = [
    (re.compile(r';\s*(drop|delete|insert|update|alter|truncate|create|grant|revoke)\b', re.IGNORECASE),
     'statement chaining before a mutation'),
    (re.compile(r'/\*.*?\*/\s*(drop|delete|insert|update|alter|truncate)\b', re.IGNORECASE | re.DOTALL),
     'comment-concealed mutation'),
    (re.compile(r'--[^\n]*\b(drop|delete|truncate)\s+', re.IGNORECASE),
     'mutation concealed in a line comment'),
    (re.compile(r'\bunion\s+(all\s+)?select\s+null\b', re.IGNORECASE),
     'UNION NULL injection'),
    (re.compile(r"\bor\s+'?1'?\s*=\s*'?1'?(?![\w.])", re.IGNORECASE),
     'always-true predicate'),
    (re.compile(r'\bxp_cmdshell\b', re.IGNORECASE),
     'shell execution'),
    (re.compile(r'\bexec(ute)?\s*\(', re.IGNORECASE),
     'dynamic execution'),
    (re.compile(r'\b(pg_read_file|pg_read_binary_file|lo_import|lo_export|pg_sleep|dblink)\b', re.IGNORECASE),
     'server-side function abuse'),
    (re.compile(r'\binto\s+(outfile|dumpfile)\b', re.IGNORECASE),
     'server-side file export'),
]

CODE, STRING, IDENTIFIER, COMMENT = 'code', 'string', 'identifier', 'comment'


def split_sql_segments(sql: str) -> List[Tuple[str, str]]:
    """Split SQL text into code, string literal, quoted identifier and comment segments"""
    segments: List[Tuple[str, str]] = []
    buffer = []
    i, n = 0, len(sql)

    def flush():
        if buffer:
            segments.append((CODE, ''.join(buffer)))
            buffer.clear()

    while i < n:
        ch = sql[i]
        if sql.startswith('--', i):
            end = sql.find('\n', i)
            end = n if end == -1 else end
            flush()
            segments.append((COMMENT, sql[i:end]))
            i = end
        elif sql.startswith('/*', i):
            end = sql.find('*/', i + 2)
            end = n if end == -1 else end + 2
            flush()
            segments.append((COMMENT, sql[i:end]))
            i = end
        elif ch in ("'", '"', '`'):
            j = i + 1
            while j < n:
                if sql[j] == ch:
                    if j + 1 < n and sql[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            end = min(j + 1, n)
            flush()
            segments.append((STRING if ch == "'" else IDENTIFIER, sql[i:end]))
            i = end
        else:
            buffer.append(ch)
            i += 1

    flush()
    return segments


def strip_leading_comments(sql: str) -> str:
    """Remove whitespace and comments before the first keyword"""
    text = sql.lstrip()
    while text.startswith('--') or text.startswith('/*'):
        if text.startswith('--'):
            end = text.find('\n')
            text = '' if end == -1 else text[end + 1:]
        else:
            end = text.find('*/')
            text = '' if end == -1 else text[end + 2:]
        text = text.lstrip()
    return text


def code_only(sql: str) -> str:
    """SQL text with literals, quoted identifiers and comments blanked out"""
    return ''.join(text if kind == CODE else ' ' for kind, text in split_sql_segments(sql))


def ensure_read_only(sql: str) -> str:
    """Return the statement unchanged, or raise SafetyRejection naming the reason"""
    if not sql or not sql.strip():
        raise SafetyRejection("Empty statement", reason='empty')

    body = strip_leading_comments(sql)
    if not ALLOWED_START.match(body):
        raise SafetyRejection("Statement must start with WITH, SELECT, EXPLAIN or SHOW",
                              reason='not-read-only')

    mutation = MUTATION_PATTERN.search(sql)
    if mutation:
        raise SafetyRejection(f"Data-mutation keyword '{mutation.group(1).upper()}' found",
                              reason='mutation-keyword')

    for pattern, description in INJECTION_PATTERNS:
        if pattern.search(sql):
            raise SafetyRejection(f"Injection pattern detected: {description}", reason='injection')

    code = code_only(sql).rstrip().rstrip(';')
    if ';' in code:
        raise SafetyRejection("Multiple statements are not allowed", reason='injection')

    return sql


def validate_sql_safety(sql: str) -> bool:
    """True when the statement passes the safety gate"""
    try:
        ensure_read_only(sql)
    except SafetyRejection:
        return False
    return True
