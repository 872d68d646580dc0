from visit_logger.main import run

if __name__ == "__main__":
    run()
