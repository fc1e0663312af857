"""注文の作成とライフサイクル"""
