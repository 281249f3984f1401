#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

import os
from dataclasses import dataclass
from typing import Optional

from mp_transform import ParseError


DIAGNOSTIC_CODE_FAMILIES = {
    "DRV": [
        "DRV-0010",  # source file unreadable
    ],
    "RES": [
        "RES-0010",  # import specifier cannot be resolved
        "RES-0011",  # entry module not found
        "RES-0020",  # module graph not closed
    ],
    "PAR": [
        "PAR-0010",  # syntax error
        "PAR-0020",  # relative wildcard import
        "PAR-0030",  # module rebinds 'require' or 'exports'
    ],
    "CFG": [
        "CFG-0010",  # config file unreadable or not JSON
        "CFG-0020",  # config does not match the schema
    ],
    "EMT": [
        "EMT-0010",  # bundle cannot be written
    ],
}


@dataclass
class Diagnostic:
    kind: str  # "error" or "warning"
    message: str
    module_id: Optional[str] = None
    filename: Optional[str] = None

    line: Optional[int] = None
    column: Optional[int] = None

    # Return the one-line header; snippets will be printed at the call site
    def format(self) -> str:
        loc = ""
        if self.filename is not None:
            loc += f"{os.path.abspath(str(self.filename))}"
        if self.line is not None:
            loc += f":{self.line}"
            if self.column is not None:
                loc += f":{self.column}"
        if loc:
            loc += ": "
        return f"{loc}{self.kind}: {self.message}"


def diag_from_parse_error(kind: str, error: ParseError) -> Diagnostic:
    return Diagnostic(
        kind=kind,
        message=f"syntax: {error.message}",
        module_id=error.module_id,
        filename=error.filename,
        line=error.line,
        column=error.column,
    )
