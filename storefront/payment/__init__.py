"""支払い記録 (決済処理そのものは外部サービスが行う)"""
