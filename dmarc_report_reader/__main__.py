from dmarc_report_reader.app import run

if __name__ == "__main__":
    run()
