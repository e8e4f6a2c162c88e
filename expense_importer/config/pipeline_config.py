# config/pipeline_config.py

PIPELINE_CONFIG = {
    # batch_size: parallel requests per batch
    # inter_batch_delay: seconds to wait after a batch completes
    # inter_request_delay: stagger between request starts inside a batch
    # page_delay: seconds between search result pages
    "rate_limit_profiles": {
        "conservative": {
            "batch_size": 3,
            "inter_batch_delay": 2.0,
            "inter_request_delay": 0.5,
            "page_delay": 1.0
        },
        "normal": {
            "batch_size": 5,
            "inter_batch_delay": 1.0,
            "inter_request_delay": 0.2,
            "page_delay": 0.5
        },
        "aggressive": {
            "batch_size": 10,
            "inter_batch_delay": 0.5,
            "inter_request_delay": 0.1,
            "page_delay": 0.0
        }
    },
    "retry": {
        "max_retries": 3,      # Retries after the first attempt (4 attempts total)
        "base_delay": 1.0      # Seconds; doubled on every retry
    },
    "categorizer": {
        "chunk_size": 10,
        "chunk_delay": 0.5,
        "max_merchant_length": 50,
        "model": {
            "temperature": 0.1,
            "max_output_tokens": 2048,
            "top_p": 0.8,
            "top_k": 10
        }
    }
}
