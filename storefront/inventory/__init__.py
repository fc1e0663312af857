"""在庫台帳と商品カタログ"""
