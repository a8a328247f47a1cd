import hls_relay.web_server
from hls_relay.config import Settings
import os, sys, logging

APP = "hls_relay"

# CONFIGURE LOGGING
appdata_local = os.getenv("LOCALAPPDATA") or os.path.expanduser(os.path.join("~", ".local", "share"))
log_file_path = os.path.join(appdata_local, APP, f"{APP}.log")
os.makedirs(os.path.dirname(log_file_path), exist_ok=True)

stdout_handler = logging.StreamHandler(sys.stdout)
stdout_handler.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
file_handler = logging.FileHandler(filename=log_file_path, encoding="utf-8")

logging.basicConfig(handlers=[stdout_handler, file_handler], 
                    encoding='utf-8',
                    format='%(levelname)s:%(message)s',
                    level=logging.DEBUG)

logger = logging.getLogger(__name__)
logger.info(f"{APP} started")

def main():
    settings = Settings.from_env()
    ws = hls_relay.web_server.WebServer(settings)
    ws.start()

if __name__ == '__main__':
    main()
