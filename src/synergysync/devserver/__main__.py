"""python -m synergysync.devserver -- 启动内存开发服务器

环境变量:
    SYNERGYSYNC_DEV_HOST: 监听地址（默认 127.0.0.1）
    SYNERGYSYNC_DEV_PORT: 监听端口（默认 3000）
"""

import os

import uvicorn

from .main import create_app


def main() -> None:
    uvicorn.run(
        create_app(),
        host=os.environ.get("SYNERGYSYNC_DEV_HOST", "127.0.0.1"),
        port=int(os.environ.get("SYNERGYSYNC_DEV_PORT", "3000")),
    )


if __name__ == "__main__":
    main()
