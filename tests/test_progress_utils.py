from prisma_convert.progress_utils import ProgressReporter


def test_reporter_counts_without_tqdm():
    with ProgressReporter("Writing products", 2, interactive_mode=False, unit="file") as reporter:
        reporter.update(label="VNIR")
        reporter.update(label="SWIR")
    assert reporter.count == 2
    assert reporter._tqdm is None
