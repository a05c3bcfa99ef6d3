"""Trionic 5 ECU support: bootloader upload, footer parsing, ECU detection, dumping and flashing."""