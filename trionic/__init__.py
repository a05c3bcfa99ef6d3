"""Diagnostics, dumping and flashing of Saab Trionic 5 and 7 ECUs over CAN, with Trionic 8 helpers."""

__version__ = "0.1.0"