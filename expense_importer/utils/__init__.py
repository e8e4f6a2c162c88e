from .json_repair import JSONParseResult, JSONRepairEngine, scrape_field_values
from .date_utils import month_window, parse_email_date, to_local_naive
from .logging_config import mask_email, new_request_id, setup_logging

__all__ = [
    'JSONParseResult',
    'JSONRepairEngine',
    'scrape_field_values',
    'month_window',
    'parse_email_date',
    'to_local_naive',
    'mask_email',
    'new_request_id',
    'setup_logging',
]
