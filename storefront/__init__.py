"""
Storefront — 注文フルフィルメントサービス

カート → 注文 → ライフサイクル遷移 の流れを、在庫の整合性を保ったまま処理する。
"""
