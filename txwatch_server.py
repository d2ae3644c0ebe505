#!/usr/bin/env python3
#
# Script to run the TxWatch server.

'''Set up logging, build the engine once and serve the REST API.'''

import asyncio
import logging
import sys
import traceback

import uvicorn

from txwatch import version
from txwatch.server.controller import Controller
from txwatch.server.env import Env
from txwatch.server.rest_api import create_app


async def serve(env):
    controller = Controller(env)
    await controller.start()
    config = uvicorn.Config(create_app(controller), host=env.rest_host,
                            port=env.rest_port, log_config=None)
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        await controller.stop()


def main():
    '''Set up logging and run the server.'''
    logging.basicConfig(level=logging.INFO,
                        format=Env.default('LOG_FORMAT', '%(levelname)s:%(name)s:%(message)s'))
    logging.info(f'{version} server starting')
    try:
        if sys.version_info < (3, 10):
            raise RuntimeError('TxWatch requires Python 3.10 or greater')
        env = Env()
        logging.getLogger().setLevel(env.log_level)
        logging.info(f'logging level: {env.log_level}')
        env.log_settings()
        asyncio.run(serve(env))
    except Exception:
        traceback.print_exc()
        logging.critical('TxWatch server terminated abnormally')
        sys.exit(1)
    else:
        logging.info('TxWatch server terminated normally')


if __name__ == '__main__':
    main()
