"""Trionic 7 ECU support: security access, headers, firmware images, erasing and flashing."""