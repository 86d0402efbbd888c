"""Entry point for the mirror sidecar."""

from mirror_sidecar.main import run

if __name__ == "__main__":
    run()
