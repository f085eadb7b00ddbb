"""Chat bots

Two sessions talking through a relay. Each session keeps reconnecting on its own,
so the relay can be restarted while this runs; messages sent while disconnected
are dropped."""

import time

import tyro

import chatrelay


def main(relay_address: str = "ws://localhost:3000/ws") -> None:
    config = chatrelay.RelayConfig(relay_address=relay_address)

    with chatrelay.ChatSession("alice", config) as alice, chatrelay.ChatSession(
        "bob", config
    ) as bob:

        @bob.on_message
        def _(message: chatrelay.ChatMessage) -> None:
            if not bob.is_own_message(message):
                print(f"bob got {message.message!r} from {message.user}")

        counter = 0
        while True:
            time.sleep(1.0)
            counter += 1
            if not alice.send_text(f"ping {counter}"):
                print(f"alice is {alice.connection_state}, skipping ping {counter}")


if __name__ == "__main__":
    tyro.cli(main)
