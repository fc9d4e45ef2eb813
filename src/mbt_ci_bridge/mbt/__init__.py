"""Generation and execution of server-composed MBT tests."""

from .converter import build_mbt_test_info, decode_data_table, encode_data_table
from .launcher import ExitCode
from .params import parse_test_data

__all__ = [
    "ExitCode",
    "build_mbt_test_info",
    "decode_data_table",
    "encode_data_table",
    "parse_test_data",
]
