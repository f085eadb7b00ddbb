"""Relay server

Run a chat relay. Every message a client sends is rebroadcast to all connected
clients, including the sender. Open `http://localhost:3000/` for a health check."""

import time

import tyro

import chatrelay


def main(port: int = 3000) -> None:
    server = chatrelay.RelayServer(port=port)

    while True:
        time.sleep(10.0)
        print(f"{server.get_connection_count()} clients connected")


if __name__ == "__main__":
    tyro.cli(main)
