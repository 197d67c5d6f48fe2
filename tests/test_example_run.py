import example_run


def test_demo_confirms_once(capsys):
    final, notifications = example_run.main()

    assert final.status == "confirmed"
    assert final.payment_status == "succeeded"
    assert final.transaction_id.startswith("QR")
    assert len(notifications) == 1
    out = capsys.readouterr().out
    assert "Confirm again" in out
    assert "Booking status: confirmed" in out
