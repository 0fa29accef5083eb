import re
from enum import Enum
from typing import Dict, Tuple, Optional


class IRType(Enum):
    # Numeric
    SMALLINT = "SMALLINT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DECIMAL = "DECIMAL"  # With precision/scale
    REAL = "REAL"
    DOUBLE = "DOUBLE PRECISION"

    # String
    CHAR = "CHAR"  # Fixed length
    VARCHAR = "VARCHAR"  # Variable length
    TEXT = "TEXT"  # Unlimited

    # Binary
    BYTEA = "BYTEA"

    # Date/Time
    TIMESTAMP_TZ = "TIMESTAMP WITH TIME ZONE"

    # Boolean
    BOOLEAN = "BOOLEAN"

    # Special
    UUID = "UUID"

    # Fallback
    UNKNOWN = "UNKNOWN"


class TypeInfo:
    def __init__(self, ir_type: IRType, precision: Optional[int] = None,
                 scale: Optional[int] = None, length: Optional[int] = None):
        self.ir_type = ir_type
        self.precision = precision
        self.scale = scale
        self.length = length

    def __repr__(self):
        return f"TypeInfo({self.ir_type.value}, p={self.precision}, s={self.scale}, l={self.length})"


class TypeRegistry:
    # SQL CE type → IR type mappings
    # Format: base_type -> (IRType, precision_rule, scale_rule)
    # rule='EXTRACT' means take from the column definition
    SOURCE_TO_IR: Dict[str, Tuple[IRType, Optional[object], Optional[object]]] = {
        'tinyint': (IRType.SMALLINT, None, None),  # unsigned 0..255 in SQL CE
        'smallint': (IRType.SMALLINT, None, None),
        'int': (IRType.INTEGER, None, None),
        'integer': (IRType.INTEGER, None, None),
        'bigint': (IRType.BIGINT, None, None),
        'bit': (IRType.BOOLEAN, None, None),
        'numeric': (IRType.DECIMAL, 'EXTRACT', 'EXTRACT'),
        'decimal': (IRType.DECIMAL, 'EXTRACT', 'EXTRACT'),
        'money': (IRType.DECIMAL, 19, 4),
        'float': (IRType.DOUBLE, None, None),
        'real': (IRType.REAL, None, None),
        # Naive local times are written with the machine offset attached
        'datetime': (IRType.TIMESTAMP_TZ, None, None),
        'nchar': (IRType.CHAR, None, None),
        'nvarchar': (IRType.VARCHAR, None, None),
        'ntext': (IRType.TEXT, None, None),
        'binary': (IRType.BYTEA, None, None),
        'varbinary': (IRType.BYTEA, None, None),
        'image': (IRType.BYTEA, None, None),
        'rowversion': (IRType.BYTEA, None, None),
        'uniqueidentifier': (IRType.UUID, None, None),
    }

    # IR type → PostgreSQL type mappings
    IR_TO_POSTGRES: Dict[IRType, str] = {
        IRType.SMALLINT: 'SMALLINT',
        IRType.INTEGER: 'INTEGER',
        IRType.BIGINT: 'BIGINT',
        IRType.DECIMAL: 'NUMERIC',
        IRType.REAL: 'REAL',
        IRType.DOUBLE: 'DOUBLE PRECISION',
        IRType.VARCHAR: 'VARCHAR',
        IRType.TEXT: 'TEXT',
        IRType.CHAR: 'CHAR',
        IRType.BYTEA: 'BYTEA',
        IRType.BOOLEAN: 'BOOLEAN',
        IRType.TIMESTAMP_TZ: 'TIMESTAMP WITH TIME ZONE',
        IRType.UUID: 'UUID',
    }

    @staticmethod
    def map_to_ir(source_type: str, length: Optional[int] = None,
                  precision: Optional[int] = None, scale: Optional[int] = None) -> TypeInfo:
        """
        Map a SQL CE type to IR.

        INFORMATION_SCHEMA reports bare type names (``nchar``) with the size in
        separate columns; those arrive as ``length``/``precision``/``scale``.
        A size written into the type string (``nchar(10)``) takes precedence.
        """
        source_type_lower = (source_type or '').lower().strip()
        base_type, parsed_precision, parsed_scale, parsed_length = \
            TypeRegistry._parse_type_string(source_type_lower)

        mapping = (TypeRegistry.SOURCE_TO_IR.get(source_type_lower)
                   or TypeRegistry.SOURCE_TO_IR.get(base_type))
        if not mapping:
            return TypeInfo(IRType.UNKNOWN)

        ir_type, p_rule, s_rule = mapping
        if p_rule == 'EXTRACT':
            final_precision = parsed_precision if parsed_precision is not None else precision
            final_scale = parsed_scale if parsed_precision is not None else scale
        else:
            final_precision = p_rule
            final_scale = s_rule

        final_length = None
        if ir_type in (IRType.CHAR, IRType.VARCHAR):
            final_length = parsed_length if parsed_length is not None else length
        return TypeInfo(ir_type, final_precision, final_scale, final_length)

    @staticmethod
    def map_from_ir(type_info: TypeInfo) -> str:
        """Map IR type to PostgreSQL type"""
        base_type = TypeRegistry.IR_TO_POSTGRES.get(type_info.ir_type, 'TEXT')

        # Add precision/scale/length
        if type_info.ir_type == IRType.DECIMAL and type_info.precision:
            if type_info.scale:
                return f"{base_type}({type_info.precision},{type_info.scale})"
            return f"{base_type}({type_info.precision})"
        elif type_info.ir_type in (IRType.VARCHAR, IRType.CHAR) and type_info.length:
            return f"{base_type}({type_info.length})"

        return base_type

    @staticmethod
    def _parse_type_string(type_str: str) -> Tuple[str, Optional[int], Optional[int], Optional[int]]:
        """Parse 'nvarchar(100)' -> ('nvarchar', 100, None, 100)"""
        match = re.match(r'([a-zA-Z0-9_]+)\s*(?:\((\d+)(?:,\s*(\d+))?\))?\s*(.*)', type_str)
        if not match:
            return (type_str.strip(), None, None, None)

        base_prefix = match.group(1).strip()
        precision = int(match.group(2)) if match.group(2) else None
        scale = int(match.group(3)) if match.group(3) else None
        trailing = match.group(4).strip() if match.group(4) else ""

        base = (base_prefix + ' ' + trailing).strip() if trailing else base_prefix
        length = precision  # Alias

        return (base, precision, scale, length)

    @staticmethod
    def is_lossy_conversion(source_type: str) -> Tuple[bool, Optional[str]]:
        """Check if conversion is lossy"""
        source_ir = TypeRegistry.map_to_ir(source_type)
        if source_ir.ir_type == IRType.UNKNOWN:
            return (True, f"Unknown SQL CE type '{source_type}', exported as TEXT")

        # tinyint is unsigned in SQL CE; SMALLINT holds its whole range
        return (False, None)
