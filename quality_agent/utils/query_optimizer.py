"""
Query optimization utilities
"""

import re
from typing import Dict, List, Optional, Set, Tuple

from ..database.models import SchemaModel
from .sql_safety import CODE, split_sql_segments, strip_leading_comments

RESERVED_WORDS = {
    'all', 'analyse', 'analyze', 'and', 'any', 'array', 'as', 'asc', 'authorization', 'between',
    'both', 'case', 'cast', 'check', 'collate', 'column', 'constraint', 'cross', 'current_date',
    'current_time', 'current_timestamp', 'current_user', 'default', 'desc', 'distinct', 'do',
    'else', 'end', 'except', 'false', 'fetch', 'for', 'foreign', 'from', 'full', 'grant', 'group',
    'having', 'in', 'inner', 'intersect', 'into', 'is', 'join', 'key', 'leading', 'left', 'like',
    'limit', 'natural', 'not', 'null', 'offset', 'on', 'only', 'or', 'order', 'outer', 'primary',
    'references', 'returning', 'right', 'select', 'session_user', 'some', 'table', 'then', 'to',
    'trailing', 'true', 'union', 'unique', 'user', 'using', 'variadic', 'when', 'where', 'window',
    'with',
}

FUNCTION_REWRITES: Dict[str, List[Tuple[str, str]]] = {
    'postgresql': [
        (r'\bLEN\s*\(', 'LENGTH('),
        (r'\bISNULL\s*\(', 'COALESCE('),
        (r'\bIFNULL\s*\(', 'COALESCE('),
        (r'\bNVL\s*\(', 'COALESCE('),
        (r'\bGETDATE\s*\(\s*\)', 'NOW()'),
    ],
    'mysql': [
        (r'\bLEN\s*\(', 'CHAR_LENGTH('),
        (r'\bNVL\s*\(', 'IFNULL('),
        (r'\bGETDATE\s*\(\s*\)', 'NOW()'),
    ],
    'sqlite': [
        (r'\bLEN\s*\(', 'LENGTH('),
        (r'\bISNULL\s*\(', 'IFNULL('),
        (r'\bNVL\s*\(', 'IFNULL('),
        (r'\bGETDATE\s*\(\s*\)', 'CURRENT_TIMESTAMP'),
        (r'\bNOW\s*\(\s*\)', 'CURRENT_TIMESTAMP'),
    ],
}

IDENTIFIER_TOKEN = re.compile(r'\b([A-Za-z_][A-Za-z0-9_$]*)\b')
LIMIT_CLAUSE = re.compile(r'\b(limit|fetch\s+first)\b', re.IGNORECASE)
TRAILING_OFFSET = re.compile(r'\boffset\s+\d+(\s+rows?)?\s*$', re.IGNORECASE)


class QueryOptimizer:
    """Optimization pass for statements that already passed the safety gate"""

    def __init__(self, row_limit_cap: int = 10000):
        self.row_limit_cap = row_limit_cap

    def optimize(self, sql: str, schema: Optional[SchemaModel], dialect: str,
                 header: Optional[str] = None) -> str:
        """Quote identifiers, normalize functions and cap the row count"""
        optimized = sql.strip()

        if schema is not None:
            optimized = self._quote_identifiers(optimized, schema, dialect)

        optimized = self._normalize_functions(optimized, dialect)
        optimized = self._apply_row_cap(optimized)

        if header:
            comment = '\n'.join(f"-- {line}" for line in header.splitlines())
            optimized = f"{comment}\n{optimized}"

        return optimized

    def _identifier_sets(self, schema: SchemaModel) -> Tuple[Set[str], Set[str]]:
        names = set()
        for table in schema.tables:
            names.add(table.schema_name)
            names.add(table.table_name)
            names.update(col.name for col in table.columns)

        mixed_case = {name for name in names if name != name.lower() and name != name.upper()}
        reserved = {name.lower() for name in names if name.lower() in RESERVED_WORDS}
        return mixed_case, reserved

    def _quote_identifiers(self, sql: str, schema: SchemaModel, dialect: str) -> str:
        """Quote schema identifiers that are reserved words or mixed-case"""
        mixed_case, reserved = self._identifier_sets(schema)
        if not mixed_case and not reserved:
            return sql

        quote = '`' if dialect == 'mysql' else '"'

        def rewrite(segment: str) -> str:
            def replace(match):
                token = match.group(1)
                if token in mixed_case:
                    return f"{quote}{token}{quote}"
                if token.lower() in reserved and self._in_identifier_position(segment, match):
                    return f"{quote}{token}{quote}"
                return token

            return IDENTIFIER_TOKEN.sub(replace, segment)

        return self._map_code(sql, rewrite)

    @staticmethod
    def _in_identifier_position(segment: str, match) -> bool:
        before = segment[:match.start()].rstrip()
        after = segment[match.end():].lstrip()
        if before.endswith('.') or after.startswith('.'):
            return True
        previous = re.search(r'([A-Za-z_]+)$', before)
        return bool(previous and previous.group(1).lower() in ('from', 'join'))

    def _normalize_functions(self, sql: str, dialect: str) -> str:
        """Rewrite generic functions to the target dialect's equivalents"""
        rewrites = [(re.compile(pattern, re.IGNORECASE), replacement)
                    for pattern, replacement in FUNCTION_REWRITES.get(dialect, [])]
        if not rewrites:
            return sql

        def rewrite(segment: str) -> str:
            for pattern, replacement in rewrites:
                segment = pattern.sub(replacement, segment)
            return segment

        return self._map_code(sql, rewrite)

    def _apply_row_cap(self, sql: str) -> str:
        """Append a hard LIMIT to SELECT/WITH statements that have none"""
        body = strip_leading_comments(sql)
        if not re.match(r'^(select|with)\b', body, re.IGNORECASE):
            return sql

        code = ''.join(text for kind, text in split_sql_segments(sql) if kind == CODE)
        if LIMIT_CLAUSE.search(code):
            return sql

        trimmed = sql.rstrip()
        while trimmed.endswith(';'):
            trimmed = trimmed[:-1].rstrip()

        offset = TRAILING_OFFSET.search(trimmed)
        if offset:
            head = trimmed[:offset.start()].rstrip()
            return f"{head}\nLIMIT {self.row_limit_cap} {offset.group(0).strip()}"
        return f"{trimmed}\nLIMIT {self.row_limit_cap}"

    @staticmethod
    def _map_code(sql: str, func) -> str:
        return ''.join(func(text) if kind == CODE else text for kind, text in split_sql_segments(sql))
