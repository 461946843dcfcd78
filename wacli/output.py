"""Console output and QR rendering"""

from typing import Optional

import qrcode
from rich.console import Console

# Use plain consoles without any styling
console = Console(force_terminal=False, no_color=True, legacy_windows=False, markup=False, highlight=False, emoji=False)
err_console = Console(stderr=True, force_terminal=False, no_color=True, legacy_windows=False, markup=False, highlight=False, emoji=False)


def qr_lines(payload: str) -> list[str]:
    """Render a pairing payload as half-block QR code lines"""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=1,
        border=1,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    modules = qr.get_matrix()
    width = len(modules[0])
    lines = []
    # Two module rows per text line
    for y in range(0, len(modules), 2):
        line = ""
        for x in range(width):
            top = modules[y][x]
            bottom = modules[y + 1][x] if y + 1 < len(modules) else False
            if top and bottom:
                line += "█"
            elif top:
                line += "▀"
            elif bottom:
                line += "▄"
            else:
                line += " "
        lines.append(line)
    return lines


def render_qr(payload: str, out: Optional[Console] = None):
    """Draw a pairing payload for the operator to scan"""
    out = out or console
    for line in qr_lines(payload):
        out.print(line, soft_wrap=True)
