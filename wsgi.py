import gevent.monkey
gevent.monkey.patch_all()

from app import create_app  # noqa: E402

app = create_app()
