"""
Stand-in engine executable for testing.

Behaves like the engine as far as py2matlab can see:

    stub_engine.py -help
        prints help text ending in a ``Version: <x.y.z> (...),`` line
    stub_engine.py -nosplash -batch "cd('<dir>'); py2matlab_session('<host>', <port>);"
        connects back and answers JSON-line requests
    stub_engine.py -nosplash -batch "cd('<dir>'); disp(jsonencode(f(jsondecode(urldecode('...'))))); exit;"
        prints the decoded item

Environment variables:
    STUB_ENGINE_VERSION  version printed by -help (default 9.6.0.1072779)
    STUB_ENGINE_MODE     echo | reverse | duplicate | error | silent | hangup
    STUB_ENGINE_STARTUP  normal | stderr | exit
    STUB_ENGINE_LOG      file that receives one line per message seen
"""

import json
import os
import re
import socket
import sys
import time
from urllib.parse import unquote

SESSION_CALL = re.compile(r"py2matlab_session\('((?:[^']|'')*)', (\d+)\)")
ONE_SHOT_INPUT = re.compile(r"urldecode\('((?:[^']|'')*)'\)")

REVERSE_BATCH = 2


def record(entry):
    log_file = os.environ.get('STUB_ENGINE_LOG')
    if log_file:
        with open(log_file, 'a') as f:
            f.write(json.dumps(entry) + '\n')


def print_help():
    version = os.environ.get('STUB_ENGINE_VERSION', '9.6.0.1072779')
    print("Usage: matlab [-h|-help] [-nosplash] [-batch statement]")
    print("")
    print(f"Version: {version} (R2019a), Update 0")


def reply(client, message):
    client.sendall((json.dumps(message) + '\n').encode('utf-8'))


def run_session(host, port):
    mode = os.environ.get('STUB_ENGINE_MODE', 'echo')
    client = socket.create_connection((host, port))
    buffer = b''
    held = []

    while True:
        chunk = client.recv(65536)
        if not chunk:
            break
        buffer += chunk
        while b'\n' in buffer:
            line, buffer = buffer.split(b'\n', 1)
            message = json.loads(line)
            record(message)

            if message['action'] == 'quit':
                client.close()
                return 0

            response = {'id': message['id'], 'action': 'process', 'data': message['data']}
            if mode == 'echo':
                reply(client, response)
            elif mode == 'duplicate':
                reply(client, response)
                reply(client, dict(response, data='duplicate'))
            elif mode == 'error':
                reply(client, {'id': message['id'], 'action': 'error',
                               'data': 'Undefined function or variable'})
            elif mode == 'reverse':
                held.append(response)
                if len(held) == REVERSE_BATCH:
                    for response in reversed(held):
                        reply(client, response)
                    held = []
            elif mode == 'hangup':
                client.close()
                return 0
            # silent: never answer

    client.close()
    return 0


def run_one_shot(statement):
    match = ONE_SHOT_INPUT.search(statement)
    if not match:
        print("Unrecognized statement", file=sys.stderr)
        return 1
    data = json.loads(unquote(match.group(1).replace("''", "'")))
    record({'action': 'one-shot', 'data': data})

    if os.environ.get('STUB_ENGINE_MODE', 'echo') == 'error':
        print("Error using process: Undefined function or variable", file=sys.stderr)
        return 1
    print(json.dumps(data))
    return 0


def main(argv):
    if '-help' in argv:
        print_help()
        return 0

    startup = os.environ.get('STUB_ENGINE_STARTUP', 'normal')
    if startup == 'exit':
        return 3
    if startup == 'stderr':
        print("License checkout failed", file=sys.stderr, flush=True)
        time.sleep(30)
        return 1

    statement = argv[argv.index('-batch') + 1]
    match = SESSION_CALL.search(statement)
    if match:
        return run_session(match.group(1).replace("''", "'"), int(match.group(2)))
    return run_one_shot(statement)


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
