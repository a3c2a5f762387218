class RuntimeConfig:
    def __init__(self):
        self.timeout = 60 # Seconds per request, applies to playlists, keys and segments
        self.max_retries = 3 # Attempts per request for 5xx responses and transport errors
        self.concurrency = 100
        self.max_segment_attempts = None # None retries a failing segment until the process is killed
        self.retry_backoff = 0.5 # Seconds, doubled on every failed attempt of the same segment
        self.max_backoff = 30
        self.max_playlist_depth = 5 # How many master playlists may be chained before giving up
        self.temp_folder_name = "ts_segments"
        self.default_file_name = "output"
        self.default_extension = ".mp4" # The file is still raw MPEG-TS, nothing gets remuxed
        self.proxy = None
        self.verify_ssl = True
        self.use_http2 = True
        self.user_agent = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
        self.progress_width = 50


# Singleton instance used by default, every component accepts its own config as well
config = RuntimeConfig()
